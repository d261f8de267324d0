from sqlalchemy import Boolean, Column, String, DateTime, Integer, Text, ForeignKey, Float
from sqlalchemy.dialects.postgresql import UUID, JSONB
# NOTE: dates extracted from documents are stored as ISO strings (YYYY-MM-DD), like the
# validation form sends them back; only bookkeeping timestamps use DateTime.
from datetime import datetime
import uuid
from app.database import Base


DOSSIER_STATUSES = (
    "draft",
    "analyzing",
    "pending_validation",
    "validated",
    "paid",
    "completed",
    "error",
)


class Dossier(Base):
    """One property-sale disclosure case (pre-etat date)."""
    __tablename__ = "pv_dossiers"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    session_id = Column(String(100), nullable=True, index=True)
    status = Column(String(30), default="draft", nullable=False)  # see DOSSIER_STATUSES
    current_step = Column(Integer, default=1, nullable=False)

    # Normalized AI extraction (copropriete, lot, financier, juridique, diagnostics, meta)
    extracted_data = Column(JSONB, nullable=True)

    # Lot / property (lot number and address may come from the manual first step)
    property_lot_number = Column(String(100), nullable=True)
    property_address = Column(Text, nullable=True)
    property_surface = Column(Float, nullable=True)
    tantiemes_lot = Column(Integer, nullable=True)
    tantiemes_totaux = Column(Integer, nullable=True)
    copropriete_name = Column(String(255), nullable=True)
    syndic_name = Column(String(255), nullable=True)

    # Financial (CSN part I)
    budget_previsionnel = Column(Float, nullable=True)
    charges_courantes = Column(Float, nullable=True)  # final value: computed estimate when available
    charges_calculees = Column(Float, nullable=True)  # tantiemes_lot / tantiemes_totaux * budget
    charges_discrepancy_pct = Column(Float, nullable=True)  # only set when > 5%
    charges_exceptionnelles = Column(Float, nullable=True)
    charges_budget_n1 = Column(Float, nullable=True)
    charges_budget_n2 = Column(Float, nullable=True)
    charges_hors_budget_n1 = Column(Float, nullable=True)
    charges_hors_budget_n2 = Column(Float, nullable=True)
    provisions_exigibles = Column(Float, nullable=True)
    avances_reserve = Column(Float, nullable=True)
    provisions_speciales = Column(Float, nullable=True)
    fonds_travaux_exists = Column(Boolean, nullable=True)
    fonds_travaux_balance = Column(Float, nullable=True)
    fonds_travaux_cotisation = Column(Float, nullable=True)
    impaye_vendeur = Column(Float, nullable=True)
    impaye_charges_global = Column(Float, nullable=True)
    dette_copro_fournisseurs = Column(Float, nullable=True)
    dette_fournisseurs_global = Column(Float, nullable=True)
    emprunt_collectif_solde = Column(Float, nullable=True)
    emprunt_collectif_echeance = Column(String(100), nullable=True)
    cautionnement_solidaire = Column(Boolean, default=False, nullable=False)

    # Copropriete life (CSN part II-A)
    assurance_multirisque = Column(String(255), nullable=True)
    assurance_numero_contrat = Column(String(100), nullable=True)
    prochaine_ag_date = Column(String(10), nullable=True)
    syndic_type = Column(String(50), nullable=True)
    syndic_mandat_fin = Column(String(10), nullable=True)
    copropriete_en_difficulte = Column(Boolean, default=False, nullable=False)
    copropriete_difficulte_details = Column(Text, nullable=True)
    fibre_optique = Column(Boolean, nullable=True)
    date_construction = Column(String(50), nullable=True)
    nombre_lots_copropriete = Column(Integer, nullable=True)

    # Technical dossier (CSN part II-B)
    dtg_date = Column(String(10), nullable=True)
    dtg_resultat = Column(Text, nullable=True)
    plan_pluriannuel_exists = Column(Boolean, nullable=True)
    plan_pluriannuel_details = Column(Text, nullable=True)
    amiante_dta_date = Column(String(10), nullable=True)
    plomb_date = Column(String(10), nullable=True)
    termites_date = Column(String(10), nullable=True)
    audit_energetique_date = Column(String(10), nullable=True)
    ascenseur_exists = Column(Boolean, default=False, nullable=False)
    ascenseur_rapport_date = Column(String(10), nullable=True)
    piscine_exists = Column(Boolean, default=False, nullable=False)
    recharge_vehicules = Column(Boolean, default=False, nullable=False)

    # Energy certificate (verified downstream against the ADEME registry)
    dpe_ademe_number = Column(String(50), nullable=True)
    dpe_date = Column(String(10), nullable=True)
    dpe_classe_energie = Column(String(1), nullable=True)
    dpe_classe_ges = Column(String(1), nullable=True)

    # Legal / procedural
    procedures_en_cours = Column(Boolean, default=False, nullable=False)
    procedures_details = Column(Text, nullable=True)
    travaux_votes_non_realises = Column(Boolean, default=False, nullable=False)
    travaux_details = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class Document(Base):
    """One uploaded co-ownership file attached to a dossier."""
    __tablename__ = "pv_documents"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    dossier_id = Column(UUID(as_uuid=True), ForeignKey("pv_dossiers.id", ondelete="CASCADE"), nullable=False, index=True)
    original_filename = Column(String(255), nullable=False)
    storage_path = Column(String(500), nullable=False)  # GCS object name
    file_size_bytes = Column(Integer, nullable=True)
    mime_type = Column(String(100), default="application/pdf", nullable=False)

    # Classification (document_type stays NULL until the classifier has run or the user picked a slot)
    document_type = Column(String(50), nullable=True)
    ai_confidence = Column(Float, nullable=True)  # 0.0-1.0
    ai_classification_raw = Column(JSONB, nullable=True)
    normalized_filename = Column(String(255), nullable=True)  # e.g. 04_PV_AG_2024.pdf
    sort_order = Column(Integer, default=50, nullable=False)
    is_combined_diagnostic = Column(Boolean, default=False, nullable=False)  # DDT bundle

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class AiCallLog(Base):
    """One call to the AI document service (classification or extraction)."""
    __tablename__ = "pv_ai_logs"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    dossier_id = Column(UUID(as_uuid=True), ForeignKey("pv_dossiers.id", ondelete="CASCADE"), nullable=False, index=True)
    model = Column(String(100), nullable=False)
    prompt_type = Column(String(50), nullable=False)  # classification, extraction
    latency_ms = Column(Integer, nullable=False)
    response_payload = Column(JSONB, nullable=True)  # {"preview": first 500 chars}
    error = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
