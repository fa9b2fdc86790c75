"""Financial return of machine upgrades.

Per-upgrade savings are estimated in four buckets (energy, maintenance,
productivity, quality) from the machine's parameters and the unit costs.
Recorded upgrades accumulate into line-wide totals that feed the NPV, IRR
and payback figures.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from dateutil.relativedelta import relativedelta

from .config import CostConfig
from .models import FinancialMetrics, Machine

logger = logging.getLogger(__name__)

UTILIZATION = 0.85
HOURS_PER_YEAR = 24 * 365
SHIFT_HOURS = 8
WORKING_DAYS = 250
ENERGY_REDUCTION = 0.20
MAINTENANCE_REDUCTION = 0.30
DOWNTIME_REDUCTION = 0.30
DEFECT_REDUCTION = 0.25

RECOMMENDATION_MIN_ROI = 50.0
NPV_YEARS = 5
DEFAULT_DISCOUNT_RATE = 0.10
MAX_BREAK_EVEN_MONTHS = 1200
NOT_AVAILABLE = "N/A"


def calculate_roi(investment: float, savings: float) -> float:
    """Return on investment in percent, 0 when nothing was invested."""
    if investment == 0:
        return 0.0
    return (savings - investment) / investment * 100


def calculate_payback_period(investment: float, monthly_savings: float) -> Optional[float]:
    """Months until savings cover the investment, None when never."""
    if monthly_savings <= 0:
        return None
    return investment / monthly_savings


def format_payback(payback_months: Optional[float]) -> str:
    if payback_months is None:
        return NOT_AVAILABLE
    return f"{payback_months:.1f} months"


def break_even_date(payback_months: Optional[float], now: Optional[datetime] = None) -> Optional[datetime]:
    if payback_months is None or payback_months > MAX_BREAK_EVEN_MONTHS:
        return None
    now = now or datetime.now()
    whole = int(payback_months)
    return now + relativedelta(months=whole, days=round((payback_months - whole) * 30))


@dataclass
class SavingsBreakdown:
    """Annual savings per bucket."""

    energy: float = 0.0
    maintenance: float = 0.0
    productivity: float = 0.0
    quality: float = 0.0

    @property
    def total(self) -> float:
        return self.energy + self.maintenance + self.productivity + self.quality

    def to_dict(self) -> Dict[str, float]:
        return {
            "energy": round(self.energy, 2),
            "maintenance": round(self.maintenance, 2),
            "productivity": round(self.productivity, 2),
            "quality": round(self.quality, 2),
        }


@dataclass
class ROIAnalysis:
    """Projected return of a single upgrade."""

    upgrade_cost: float
    annual_savings: float
    monthly_savings: float
    roi_percentage: float
    payback_months: Optional[float]
    break_even_date: Optional[datetime]
    details: SavingsBreakdown
    upgrade_type: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "upgradeType": self.upgrade_type,
            "upgradeCost": self.upgrade_cost,
            "annualSavings": round(self.annual_savings, 2),
            "monthlySavings": round(self.monthly_savings, 2),
            "roiPercentage": round(self.roi_percentage, 1),
            "paybackMonths": round(self.payback_months, 2) if self.payback_months is not None else NOT_AVAILABLE,
            "breakEvenDate": self.break_even_date.date().isoformat() if self.break_even_date else None,
            "details": self.details.to_dict(),
        }


@dataclass
class ROIRecord:
    """An upgrade priced and recorded for the line-wide totals."""

    machine_id: Optional[str]
    analysis: ROIAnalysis
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass
class ROISummary:
    """Line-wide financial return of all recorded upgrades."""

    overall_roi: float = 0.0
    payback_period: str = NOT_AVAILABLE
    net_present_value: float = 0.0
    internal_rate_of_return: float = 0.0
    total_investment: float = 0.0
    total_savings: float = 0.0
    savings_breakdown: SavingsBreakdown = field(default_factory=SavingsBreakdown)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "overallROI": round(self.overall_roi, 1),
            "paybackPeriod": self.payback_period,
            "netPresentValue": round(self.net_present_value, 2),
            "internalRateOfReturn": round(self.internal_rate_of_return, 2),
            "totalInvestment": round(self.total_investment, 2),
            "totalSavings": round(self.total_savings, 2),
            "savingsBreakdown": self.savings_breakdown.to_dict(),
        }


@dataclass
class ROIRecommendation:
    """A machine and upgrade pair worth investing in."""

    machine_id: str
    machine_name: str
    upgrade_type: str
    cost: float
    expected_roi: float
    payback_months: Optional[float]
    priority: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "machineId": self.machine_id,
            "machine": self.machine_name,
            "upgradeType": self.upgrade_type,
            "cost": self.cost,
            "expectedROI": round(self.expected_roi, 1),
            "paybackMonths": round(self.payback_months, 2) if self.payback_months is not None else NOT_AVAILABLE,
            "priority": round(self.priority, 3),
        }


def calculate_expected_savings(machine: Machine, costs: CostConfig) -> SavingsBreakdown:
    """Annual savings an upgrade is expected to unlock on a machine."""
    margin = costs.unit_margin

    energy = machine.energy_cost * ENERGY_REDUCTION * costs.electricity_cost * HOURS_PER_YEAR * UTILIZATION
    maintenance = costs.maintenance_cost * MAINTENANCE_REDUCTION * 12

    # Recovered production hours valued at the hourly output margin
    hourly_production_value = machine.speed * 60 * margin
    productivity = (
        machine.failure_rate * DOWNTIME_REDUCTION * SHIFT_HOURS * WORKING_DAYS * hourly_production_value / 100
    )

    quality = (
        machine.failure_rate * DEFECT_REDUCTION * machine.speed * 60 * SHIFT_HOURS * WORKING_DAYS * margin / 100
    )

    return SavingsBreakdown(
        energy=energy, maintenance=maintenance, productivity=productivity, quality=quality
    )


class ROIEngine:
    """Prices upgrades and accumulates the line's financial metrics."""

    def __init__(self):
        self._history: List[ROIRecord] = []
        self.financial_metrics = FinancialMetrics()

    @property
    def history(self) -> List[ROIRecord]:
        """Recorded upgrades, newest first."""
        return list(self._history)

    def calculate_upgrade_roi(
        self,
        upgrade_cost: float,
        machine: Machine,
        costs: CostConfig,
        upgrade_type: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ROIAnalysis:
        savings = calculate_expected_savings(machine, costs)
        annual = savings.total
        monthly = annual / 12
        payback = calculate_payback_period(upgrade_cost, monthly)

        return ROIAnalysis(
            upgrade_cost=upgrade_cost,
            annual_savings=annual,
            monthly_savings=monthly,
            roi_percentage=calculate_roi(upgrade_cost, annual),
            payback_months=payback,
            break_even_date=break_even_date(payback, now),
            details=savings,
            upgrade_type=upgrade_type,
        )

    def record_upgrade(
        self, analysis: ROIAnalysis, machine_id: Optional[str] = None, now: Optional[datetime] = None
    ) -> ROIRecord:
        record = ROIRecord(machine_id=machine_id, analysis=analysis, timestamp=now or datetime.now())
        self._history.insert(0, record)

        metrics = self.financial_metrics
        metrics.total_investment += analysis.upgrade_cost
        metrics.total_savings += analysis.annual_savings
        metrics.energy_savings += analysis.details.energy
        metrics.maintenance_savings += analysis.details.maintenance
        metrics.quality_savings += analysis.details.quality
        metrics.productivity_gains += analysis.details.productivity

        logger.debug(
            f"Recorded {analysis.upgrade_type or 'upgrade'} on {machine_id}: "
            f"cost {analysis.upgrade_cost:.0f}, savings {analysis.annual_savings:.0f}/yr"
        )
        return record

    def calculate_npv(self, years: int = NPV_YEARS, discount_rate: float = DEFAULT_DISCOUNT_RATE) -> float:
        npv = -self.financial_metrics.total_investment
        annual = self.financial_metrics.total_savings
        for year in range(1, years + 1):
            npv += annual / (1 + discount_rate) ** year
        return npv

    def calculate_irr(self, years: int = NPV_YEARS, tolerance: float = 1e-7) -> float:
        """Internal rate of return in percent, found by bisection on the NPV.

        Returns 0 when the savings never recover the investment within the
        horizon.
        """
        investment = self.financial_metrics.total_investment
        annual = self.financial_metrics.total_savings
        if investment <= 0 or annual <= 0:
            return 0.0
        if self.calculate_npv(years, 0.0) <= 0:
            return 0.0

        low, high = 0.0, 1.0
        while self.calculate_npv(years, high) > 0 and high < 1e6:
            high *= 2

        for _ in range(200):
            mid = (low + high) / 2
            if self.calculate_npv(years, mid) > 0:
                low = mid
            else:
                high = mid
            if high - low < tolerance:
                break

        return (low + high) / 2 * 100

    def calculate_irr_interpolated(self, years: int = NPV_YEARS) -> float:
        """Rough IRR by interpolating between the NPVs at 10% and 20%."""
        if self.financial_metrics.total_savings <= 0:
            return 0.0
        npv_at_10 = self.calculate_npv(years, 0.1)
        npv_at_20 = self.calculate_npv(years, 0.2)
        if npv_at_10 == npv_at_20:
            return 0.0
        irr = 0.1 + 0.1 * npv_at_10 / (npv_at_10 - npv_at_20)
        return min(100.0, max(0.0, irr * 100))

    def payback_years(self) -> Optional[float]:
        """Years until accumulated savings cover the investment."""
        metrics = self.financial_metrics
        if metrics.total_investment <= 0 or metrics.total_savings <= 0:
            return None
        return round(metrics.total_investment / metrics.total_savings, 2)

    def get_roi_summary(
        self, years: int = NPV_YEARS, discount_rate: float = DEFAULT_DISCOUNT_RATE
    ) -> ROISummary:
        metrics = self.financial_metrics
        if metrics.total_investment == 0:
            return ROISummary()

        payback = calculate_payback_period(metrics.total_investment, metrics.total_savings / 12)
        return ROISummary(
            overall_roi=calculate_roi(metrics.total_investment, metrics.total_savings),
            payback_period=format_payback(payback),
            net_present_value=self.calculate_npv(years, discount_rate),
            internal_rate_of_return=self.calculate_irr(years),
            total_investment=metrics.total_investment,
            total_savings=metrics.total_savings,
            savings_breakdown=SavingsBreakdown(
                energy=metrics.energy_savings,
                maintenance=metrics.maintenance_savings,
                productivity=metrics.productivity_gains,
                quality=metrics.quality_savings,
            ),
        )

    def generate_recommendations(
        self, machines: Iterable[Machine], upgrade_engine: Any, costs: CostConfig
    ) -> List[ROIRecommendation]:
        """Upgrade and machine pairs with ROI above 50%, best ROI first.

        Candidates are the upgrades each machine can currently take; priority
        weighs the upgrade's expected impact plus a small ROI bonus.
        """
        recommendations = []
        for machine in machines:
            for upgrade in upgrade_engine.get_available_upgrades(machine):
                cost = upgrade_engine.config.upgrade_cost(upgrade.id)
                analysis = self.calculate_upgrade_roi(cost, machine, costs, upgrade.id)
                if analysis.roi_percentage <= RECOMMENDATION_MIN_ROI:
                    continue
                impact = upgrade_engine.calculate_upgrade_impact(machine, upgrade)
                recommendations.append(
                    ROIRecommendation(
                        machine_id=machine.id,
                        machine_name=machine.display_name,
                        upgrade_type=upgrade.id,
                        cost=cost,
                        expected_roi=analysis.roi_percentage,
                        payback_months=analysis.payback_months,
                        priority=upgrade_engine.calculate_priority(impact, analysis.roi_percentage),
                    )
                )

        return sorted(recommendations, key=lambda r: r.expected_roi, reverse=True)
