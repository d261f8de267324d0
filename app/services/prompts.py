"""Prompts sent to the AI document service.

Prompts are in French: the documents (PV d'AG, appels de fonds, DDT...) are
French and the extracted keys match the CSN pre-etat date model.
"""
from __future__ import annotations

from typing import Any

DOCUMENT_TYPES = (
    "pv_ag",
    "reglement_copropriete",
    "etat_descriptif_division",
    "appel_fonds",
    "releve_charges",
    "fiche_synthetique",
    "carnet_entretien",
    "plan_pluriannuel",
    "dtg",
    "dpe",
    "diagnostic_amiante",
    "diagnostic_plomb",
    "diagnostic_electricite",
    "diagnostic_gaz",
    "diagnostic_termites",
    "diagnostic_erp",
    "diagnostic_mesurage",
    "audit_energetique",
    "taxe_fonciere",
    "bail",
    "contrat_assurance",
    "other",
)

CLASSIFICATION_PROMPT = f"""Tu es un expert en copropriete francaise. Analyse ce document PDF et classifie-le.

Reponds en JSON strict avec cette structure:
{{
  "document_type": "<type>",
  "confidence": <0.0 a 1.0>,
  "title": "<titre du document>",
  "date": "<date du document, format YYYY-MM-DD ou null>",
  "summary": "<resume en 1 phrase>",
  "dpe_ademe_number": "<numero ADEME a 13 caracteres si le document contient un DPE, sinon null>",
  "diagnostics_couverts": ["<liste des document_type de chaque diagnostic present dans le document>"]
}}

Types possibles: {", ".join(DOCUMENT_TYPES)}

INSTRUCTIONS IMPORTANTES:
- Pour la date: utilise la date d'exercice ou de realisation du diagnostic (pas la date d'impression).
- Pour dpe_ademe_number: cherche le numero ADEME present sur les DPE. Retourne null si absent.
- Pour diagnostics_couverts: si le document est un DDT (Dossier de Diagnostics Techniques) contenant PLUSIEURS diagnostics, liste TOUS les types de diagnostics trouves. Si c'est un diagnostic unique, mets un tableau avec un seul element. Si ce n'est pas un diagnostic, mets un tableau vide [].
- Pour un DDT combine, le document_type doit etre le type du diagnostic principal (generalement diagnostic_amiante ou dpe)."""

EXTRACTION_PROMPT = """Tu es un expert en droit de la copropriete et en transactions immobilieres en France.
Tu analyses un ensemble de documents relatifs a une vente en copropriete pour generer un pre-etat date conforme au modele CSN.

INSTRUCTIONS:
1. Le LOT CONCERNE par la vente est indique dans le CONTEXTE DU LOT VENDU. Sans contexte, identifie-le a partir des appels de fonds ou du reglement.
2. Utilise les montants ANNUELS. Un appel trimestriel se multiplie par 4, un appel mensuel par 12.
3. tantiemes_generaux = tantiemes de PARTIES COMMUNES GENERALES du lot vendu (pas une cle speciale); tantiemes_totaux = total de la meme cle.
4. charges_budget_n1 / charges_budget_n2 = charges annuelles du lot pour les deux derniers exercices clos.
5. provisions_exigibles = provisions du budget previsionnel exigibles pour l'exercice en cours.
6. Si une information n'est pas trouvee, mets null et ajoute-la dans meta.donnees_manquantes. NE JAMAIS INVENTER un montant.
7. Si tu detectes des incoherences entre documents, ajoute une alerte dans meta.alertes.

Extrais les informations en JSON strict:
{
  "copropriete": {
    "nom": "", "adresse": "", "immatriculation_rnc": "",
    "syndic_nom": "", "syndic_adresse": "", "syndic_type": "", "syndic_mandat_fin": "",
    "assurance_multirisque": "", "assurance_numero_contrat": "",
    "nombre_lots": null, "nombre_batiments": null, "tantiemes_totaux": null,
    "prochaine_ag_date": "", "copropriete_en_difficulte": false, "copropriete_difficulte_details": "",
    "fibre_optique": null, "date_construction": ""
  },
  "lot": {
    "numero": "", "type": "appartement|parking|cave|local_commercial", "etage": "",
    "surface_carrez": null, "tantiemes_generaux": null, "tantiemes_speciaux": null
  },
  "financier": {
    "budget_previsionnel_annuel": null, "charges_courantes_lot": null, "charges_exceptionnelles_lot": null,
    "charges_budget_n1": null, "charges_budget_n2": null,
    "charges_hors_budget_n1": null, "charges_hors_budget_n2": null,
    "fonds_travaux_exists": null, "fonds_travaux_solde": null, "fonds_travaux_cotisation_annuelle": null,
    "provisions_exigibles": null, "avances_reserve": null, "provisions_speciales": null,
    "impayes_vendeur": null, "impaye_charges_global": null,
    "dette_copro_fournisseurs": null, "dette_fournisseurs_global": null,
    "emprunt_collectif_solde": null, "emprunt_collectif_echeance": "", "cautionnement_solidaire": false
  },
  "juridique": {
    "procedures_en_cours": false, "procedures_details": "",
    "travaux_votes_non_realises": false, "travaux_votes_details": "", "travaux_a_venir_votes": [],
    "sinistres_en_cours": false, "sinistres_details": ""
  },
  "diagnostics": {
    "dpe_numero_ademe": "", "dpe_date": "", "dpe_classe_energie": "", "dpe_classe_ges": "",
    "amiante_dta_date": "", "plomb_date": "", "termites_date": "", "carrez_surface": null,
    "dtg_date": "", "dtg_resultat": "", "plan_pluriannuel_exists": null, "plan_pluriannuel_details": "",
    "audit_energetique_date": "", "ascenseur_exists": null, "ascenseur_rapport_date": "",
    "piscine_exists": null, "recharge_vehicules": null
  },
  "meta": {
    "documents_analyses": [], "donnees_manquantes": [], "alertes": [], "confiance_globale": 0.0
  }
}

Reponds UNIQUEMENT avec le JSON, sans commentaire."""


def build_lot_context(lot_number: str | None, property_address: str | None) -> str:
    """CONTEXTE DU LOT VENDU block, empty when the seller gave nothing."""
    lines = []
    if lot_number:
        lines.append(f"- Numero(s) de lot vendu(s) : {lot_number}")
    if property_address:
        lines.append(f"- Adresse du bien : {property_address}")
    if not lines:
        return ""
    return "\nCONTEXTE DU LOT VENDU:\n" + "\n".join(lines)


def _section(q: dict[str, Any], key: str) -> dict[str, Any]:
    value = q.get(key)
    return value if isinstance(value, dict) else {}


def build_questionnaire_context(q: dict[str, Any] | None) -> str:
    """Turn seller questionnaire answers into hints for the extraction model."""
    if not q or not isinstance(q, dict):
        return ""

    lines = ["\nCONTEXTE DU QUESTIONNAIRE VENDEUR:"]

    occ = _section(q, "occupation")
    if occ.get("occupant_actuel") == "locataire" or occ.get("bail_en_cours") is True:
        lines.append("- Le bien est LOUE. Un bail est en cours. Cherche les informations du bail dans les documents.")
        if occ.get("bail_type"):
            lines.append(f"  Type de bail : {occ['bail_type']}")
        if occ.get("loyer_mensuel"):
            lines.append(f"  Loyer mensuel declare : {occ['loyer_mensuel']} EUR")
    elif occ.get("occupant_actuel") == "proprietaire":
        lines.append("- Le bien est occupe par le proprietaire.")
    elif occ.get("occupant_actuel") == "vacant":
        lines.append("- Le bien est actuellement vacant.")

    copro = _section(q, "copropriete_questions")
    if copro.get("association_syndicale") is True:
        lines.append("- Une ASL ou AFUL existe. Cherche ses charges et reglements en complement de la copropriete.")
        if copro.get("association_syndicale_details"):
            lines.append(f"  Details ASL : {copro['association_syndicale_details']}")
    if copro.get("volume_ou_lotissement") is True:
        lines.append("- Le bien fait partie d'un volume ou lotissement.")

    trav = _section(q, "travaux")
    if trav.get("travaux_realises") is True:
        lines.append("- Le vendeur a realise des travaux privatifs dans le lot.")
        if trav.get("travaux_realises_details"):
            lines.append(f"  Description : {trav['travaux_realises_details']}")

    prets = _section(q, "prets")
    if prets.get("pret_hypothecaire") is True:
        lines.append("- Un pret hypothecaire existe sur le bien.")
    if prets.get("saisie_en_cours") is True:
        lines.append("- ATTENTION: Une saisie immobiliere est en cours.")

    sin = _section(q, "sinistres")
    if sin.get("sinistre_indemnise") is True:
        lines.append("- Un sinistre indemnise est declare.")
    if sin.get("catastrophe_naturelle") is True:
        lines.append("- Une catastrophe naturelle a ete declaree.")
    if sin.get("degat_des_eaux") is True:
        lines.append("- Un degat des eaux est declare.")

    fisc = _section(q, "fiscal")
    if fisc.get("dispositif_fiscal") and fisc.get("dispositif_fiscal") != "aucun":
        lines.append(f"- Dispositif fiscal en cours : {fisc['dispositif_fiscal']}")

    if len(lines) <= 1:
        return ""
    return "\n".join(lines)


def build_extraction_prompt(
    *,
    lot_number: str | None = None,
    property_address: str | None = None,
    questionnaire: dict[str, Any] | None = None,
    covered_diagnostics: list[str] | None = None,
) -> str:
    prompt = EXTRACTION_PROMPT + build_lot_context(lot_number, property_address)
    prompt += build_questionnaire_context(questionnaire)
    if covered_diagnostics:
        prompt += (
            "\nLa classification prealable a identifie les diagnostics suivants dans les documents fournis: "
            + ", ".join(covered_diagnostics)
            + "."
        )
    return prompt
