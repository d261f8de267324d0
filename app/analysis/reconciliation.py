"""
Hybrid charge calculation and financial cross-checks.

The lot's recurring charge is recomputed from its share of the common-parts
tantiemes and the annual budget, then compared with what the model read in the
documents. Inconsistencies become French alert strings for ``meta.alertes``;
nothing here raises or touches I/O.
"""
from __future__ import annotations

from dataclasses import dataclass, field

from app.analysis.config import AnalysisConfig
from app.analysis.schema import StructuredExtraction
from app.services.coercion import round2, to_number


@dataclass(frozen=True)
class ChargeInputs:
    lot_share: float | None = None
    total_share: float | None = None
    budget: float | None = None
    ai_charge: float | None = None
    prior_year_charge: float | None = None
    provisions: float | None = None


@dataclass
class ReconciliationResult:
    final_charge: float | None = None
    estimated_charge: float | None = None
    ai_charge: float | None = None
    discrepancy_pct: float | None = None
    alerts: list[str] = field(default_factory=list)

    @property
    def has_discrepancy(self) -> bool:
        return self.discrepancy_pct is not None


def _fmt_amount(value: float) -> str:
    """540.0 -> '540', 540.5 -> '540.5'."""
    return ("%.2f" % value).rstrip("0").rstrip(".")


def inputs_from_extraction(extraction: StructuredExtraction) -> ChargeInputs:
    total_share = to_number(extraction.copropriete.tantiemes_totaux)
    if total_share is None:
        total_share = to_number(extraction.lot.tantiemes_totaux)
    fin = extraction.financier
    return ChargeInputs(
        lot_share=to_number(extraction.lot.tantiemes_generaux),
        total_share=total_share,
        budget=to_number(fin.budget_previsionnel_annuel),
        ai_charge=to_number(fin.charges_courantes_lot),
        prior_year_charge=to_number(fin.charges_budget_n1),
        provisions=to_number(fin.provisions_exigibles),
    )


def reconcile_charges(inputs: ChargeInputs, config: AnalysisConfig | None = None) -> ReconciliationResult:
    config = config or AnalysisConfig()
    result = ReconciliationResult(ai_charge=inputs.ai_charge)

    estimated = None
    if inputs.lot_share and inputs.total_share and inputs.total_share > 0 and inputs.budget:
        estimated = round2(inputs.lot_share / inputs.total_share * inputs.budget)
        # A tiny share can round the estimate down to 0.0
        if estimated > 0 and inputs.ai_charge and inputs.ai_charge > 0:
            diff_pct = round2(abs(estimated - inputs.ai_charge) / estimated * 100)
            if diff_pct > config.charges_discrepancy_pct:
                result.discrepancy_pct = diff_pct

    result.estimated_charge = estimated
    result.final_charge = estimated if estimated is not None else inputs.ai_charge

    n1 = inputs.prior_year_charge
    if estimated and n1 and n1 > 0:
        diff_n1 = abs(estimated - n1) / estimated * 100
        if diff_n1 > config.prior_year_discrepancy_pct:
            result.alerts.append(
                f"Écart de {diff_n1:.0f}% entre charges calculées ({_fmt_amount(estimated)}€) "
                f"et charges budget N-1 ({_fmt_amount(n1)}€). Vérifiez les tantièmes."
            )

    provisions = inputs.provisions
    if provisions and estimated and provisions > estimated * config.provisions_ratio_limit:
        result.alerts.append(
            f"Provisions exigibles ({_fmt_amount(provisions)}€) supérieures aux charges "
            f"annuelles ({_fmt_amount(estimated)}€). Vérifiez ce montant."
        )

    return result
