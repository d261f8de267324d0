"""
Typed view of the joint extraction response.

The model answers with nested groups (copropriete, lot, financier, juridique,
diagnostics, meta). Each group is a dataclass with named optional fields; keys
the model adds beyond those are kept in ``extra`` so the persisted
``extracted_data`` blob loses nothing. Values are stored as returned: coercion
to column types happens when flattening.
"""
from __future__ import annotations

from dataclasses import dataclass, field, fields
from typing import Any, ClassVar


class _Group:
    """from_payload / to_dict shared by every extraction group."""

    extra: dict[str, Any]

    @classmethod
    def from_payload(cls, payload: Any):
        if not isinstance(payload, dict):
            return cls()
        known = {f.name for f in fields(cls) if f.name != "extra"}
        kwargs = {k: v for k, v in payload.items() if k in known}
        extra = {k: v for k, v in payload.items() if k not in known}
        return cls(**kwargs, extra=extra)

    def to_dict(self) -> dict[str, Any]:
        data = {f.name: getattr(self, f.name) for f in fields(self) if f.name != "extra"}
        data.update(self.extra)
        return data


@dataclass
class CoproprieteGroup(_Group):
    nom: str | None = None
    adresse: str | None = None
    immatriculation_rnc: str | None = None
    syndic_nom: str | None = None
    syndic_adresse: str | None = None
    syndic_type: str | None = None
    syndic_mandat_fin: str | None = None
    assurance_multirisque: str | None = None
    assurance_numero_contrat: str | None = None
    nombre_lots: Any = None
    nombre_batiments: Any = None
    tantiemes_totaux: Any = None
    prochaine_ag_date: str | None = None
    copropriete_en_difficulte: Any = None
    copropriete_difficulte_details: str | None = None
    fibre_optique: Any = None
    date_construction: Any = None
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass
class LotGroup(_Group):
    numero: Any = None
    type: str | None = None
    etage: Any = None
    surface_carrez: Any = None
    tantiemes_generaux: Any = None
    tantiemes_speciaux: Any = None
    tantiemes_totaux: Any = None
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass
class FinancierGroup(_Group):
    budget_previsionnel_annuel: Any = None
    charges_courantes_lot: Any = None
    charges_exceptionnelles_lot: Any = None
    charges_budget_n1: Any = None
    charges_budget_n2: Any = None
    charges_hors_budget_n1: Any = None
    charges_hors_budget_n2: Any = None
    fonds_travaux_exists: Any = None
    fonds_travaux_solde: Any = None
    fonds_travaux_cotisation_annuelle: Any = None
    provisions_exigibles: Any = None
    avances_reserve: Any = None
    provisions_speciales: Any = None
    impayes_vendeur: Any = None
    impaye_charges_global: Any = None
    dette_copro_fournisseurs: Any = None
    dette_fournisseurs_global: Any = None
    emprunt_collectif_solde: Any = None
    emprunt_collectif_echeance: Any = None
    cautionnement_solidaire: Any = None
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass
class JuridiqueGroup(_Group):
    procedures_en_cours: Any = None
    procedures_details: str | None = None
    travaux_votes_non_realises: Any = None
    travaux_votes_details: str | None = None
    travaux_a_venir_votes: Any = None
    sinistres_en_cours: Any = None
    sinistres_details: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass
class DiagnosticsGroup(_Group):
    dpe_numero_ademe: str | None = None
    dpe_date: Any = None
    dpe_classe_energie: Any = None
    dpe_classe_ges: Any = None
    amiante_dta_date: Any = None
    plomb_date: Any = None
    termites_date: Any = None
    carrez_surface: Any = None
    dtg_date: Any = None
    dtg_resultat: str | None = None
    plan_pluriannuel_exists: Any = None
    plan_pluriannuel_details: str | None = None
    audit_energetique_date: Any = None
    ascenseur_exists: Any = None
    ascenseur_rapport_date: Any = None
    piscine_exists: Any = None
    recharge_vehicules: Any = None
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass
class MetaGroup(_Group):
    documents_analyses: list = field(default_factory=list)
    donnees_manquantes: list = field(default_factory=list)
    alertes: list = field(default_factory=list)
    confiance_globale: Any = None
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: Any) -> "MetaGroup":
        meta = super().from_payload(payload)
        # The model sometimes answers null for the lists
        for name in ("documents_analyses", "donnees_manquantes", "alertes"):
            if not isinstance(getattr(meta, name), list):
                setattr(meta, name, [])
        return meta


@dataclass
class StructuredExtraction:
    """Canonical extraction record; built once at the service boundary."""

    GROUPS: ClassVar[dict[str, type]] = {
        "copropriete": CoproprieteGroup,
        "lot": LotGroup,
        "financier": FinancierGroup,
        "juridique": JuridiqueGroup,
        "diagnostics": DiagnosticsGroup,
        "meta": MetaGroup,
    }

    copropriete: CoproprieteGroup = field(default_factory=CoproprieteGroup)
    lot: LotGroup = field(default_factory=LotGroup)
    financier: FinancierGroup = field(default_factory=FinancierGroup)
    juridique: JuridiqueGroup = field(default_factory=JuridiqueGroup)
    diagnostics: DiagnosticsGroup = field(default_factory=DiagnosticsGroup)
    meta: MetaGroup = field(default_factory=MetaGroup)
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "StructuredExtraction":
        groups = {name: group_cls.from_payload(payload.get(name)) for name, group_cls in cls.GROUPS.items()}
        extra = {k: v for k, v in payload.items() if k not in cls.GROUPS}
        return cls(**groups, extra=extra)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {name: getattr(self, name).to_dict() for name in self.GROUPS}
        data.update(self.extra)
        return data

    @property
    def alerts(self) -> list:
        return self.meta.alertes

    def add_alerts(self, alerts: list[str]) -> None:
        self.meta.alertes.extend(alerts)


@dataclass
class AnalysisContext:
    """What the caller already knows about the sale."""

    lot_number: str | None = None
    property_address: str | None = None
    questionnaire: dict[str, Any] | None = None
