"""
Flatten a StructuredExtraction into Dossier column values.

The returned dict is a partial update for ``pv_dossiers``: every scalar column
the validation form shows, the computed charges, the raw extraction blob and
the new status. Lot number and address are left out when the seller already
typed them.
"""
from __future__ import annotations

from typing import Any

from app.analysis.reconciliation import ReconciliationResult
from app.analysis.schema import AnalysisContext, StructuredExtraction
from app.services.coercion import (
    to_energy_class_letter,
    to_int,
    to_iso_date,
    to_number,
    to_text,
)


def _text(value: Any, limit: int | None = None) -> str | None:
    s = to_text(value)
    if s is not None and limit is not None:
        s = s[:limit]
    return s


def _flag(value: Any) -> bool:
    """Strict: only a JSON true counts."""
    return value is True


def _optional_flag(value: Any) -> bool | None:
    return value if isinstance(value, bool) else None


def build_dossier_updates(
    extraction: StructuredExtraction,
    reconciliation: ReconciliationResult,
    context: AnalysisContext | None = None,
) -> dict[str, Any]:
    context = context or AnalysisContext()
    copro = extraction.copropriete
    lot = extraction.lot
    fin = extraction.financier
    jur = extraction.juridique
    diag = extraction.diagnostics

    surface = lot.surface_carrez if lot.surface_carrez is not None else diag.carrez_surface
    total_share = to_number(copro.tantiemes_totaux)
    if total_share is None:
        total_share = to_number(lot.tantiemes_totaux)

    updates: dict[str, Any] = {
        "extracted_data": extraction.to_dict(),
        "status": "pending_validation",

        # Financial
        "budget_previsionnel": to_number(fin.budget_previsionnel_annuel),
        "charges_courantes": reconciliation.final_charge,
        "charges_calculees": reconciliation.estimated_charge,
        "charges_discrepancy_pct": reconciliation.discrepancy_pct,
        "charges_exceptionnelles": to_number(fin.charges_exceptionnelles_lot),
        "charges_budget_n1": to_number(fin.charges_budget_n1),
        "charges_budget_n2": to_number(fin.charges_budget_n2),
        "charges_hors_budget_n1": to_number(fin.charges_hors_budget_n1),
        "charges_hors_budget_n2": to_number(fin.charges_hors_budget_n2),
        "provisions_exigibles": to_number(fin.provisions_exigibles),
        "avances_reserve": to_number(fin.avances_reserve),
        "provisions_speciales": to_number(fin.provisions_speciales),
        "fonds_travaux_exists": fin.fonds_travaux_exists is not False,
        "fonds_travaux_balance": to_number(fin.fonds_travaux_solde),
        "fonds_travaux_cotisation": to_number(fin.fonds_travaux_cotisation_annuelle),
        "impaye_vendeur": to_number(fin.impayes_vendeur),
        "impaye_charges_global": to_number(fin.impaye_charges_global),
        "dette_copro_fournisseurs": to_number(fin.dette_copro_fournisseurs),
        "dette_fournisseurs_global": to_number(fin.dette_fournisseurs_global),
        "emprunt_collectif_solde": to_number(fin.emprunt_collectif_solde),
        "emprunt_collectif_echeance": _text(fin.emprunt_collectif_echeance, 100),
        "cautionnement_solidaire": _flag(fin.cautionnement_solidaire),

        # Lot / property
        "property_surface": to_number(surface),
        "tantiemes_lot": to_int(lot.tantiemes_generaux),
        "tantiemes_totaux": to_int(total_share),
        "copropriete_name": _text(copro.nom, 255),
        "syndic_name": _text(copro.syndic_nom, 255),

        # Copropriete life
        "assurance_multirisque": _text(copro.assurance_multirisque, 255),
        "assurance_numero_contrat": _text(copro.assurance_numero_contrat, 100),
        "prochaine_ag_date": to_iso_date(copro.prochaine_ag_date),
        "syndic_type": _text(copro.syndic_type, 50),
        "syndic_mandat_fin": to_iso_date(copro.syndic_mandat_fin),
        "copropriete_en_difficulte": _flag(copro.copropriete_en_difficulte),
        "copropriete_difficulte_details": _text(copro.copropriete_difficulte_details),
        "fibre_optique": _optional_flag(copro.fibre_optique),
        "date_construction": _text(copro.date_construction, 50),
        "nombre_lots_copropriete": to_int(copro.nombre_lots),

        # Technical dossier
        "dtg_date": to_iso_date(diag.dtg_date),
        "dtg_resultat": _text(diag.dtg_resultat),
        "plan_pluriannuel_exists": _optional_flag(diag.plan_pluriannuel_exists),
        "plan_pluriannuel_details": _text(diag.plan_pluriannuel_details),
        "amiante_dta_date": to_iso_date(diag.amiante_dta_date),
        "plomb_date": to_iso_date(diag.plomb_date),
        "termites_date": to_iso_date(diag.termites_date),
        "audit_energetique_date": to_iso_date(diag.audit_energetique_date),
        "ascenseur_exists": _flag(diag.ascenseur_exists),
        "ascenseur_rapport_date": to_iso_date(diag.ascenseur_rapport_date),
        "piscine_exists": _flag(diag.piscine_exists),
        "recharge_vehicules": _flag(diag.recharge_vehicules),

        # Energy certificate
        "dpe_date": to_iso_date(diag.dpe_date),
        "dpe_classe_energie": to_energy_class_letter(diag.dpe_classe_energie),
        "dpe_classe_ges": to_energy_class_letter(diag.dpe_classe_ges),

        # Legal / procedural
        "procedures_en_cours": _flag(jur.procedures_en_cours),
        "procedures_details": _text(jur.procedures_details),
        "travaux_votes_non_realises": _flag(jur.travaux_votes_non_realises),
        "travaux_details": _text(jur.travaux_votes_details),
    }

    # Keep an id found during classification when extraction has none
    ademe_number = _text(diag.dpe_numero_ademe, 50)
    if ademe_number:
        updates["dpe_ademe_number"] = ademe_number

    # Seller-entered values from the first step win over the extraction
    if not context.lot_number:
        updates["property_lot_number"] = _text(lot.numero, 100)
    if not context.property_address:
        updates["property_address"] = _text(copro.adresse)

    return updates
