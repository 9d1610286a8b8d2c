"""
Risk Limit Monitoring Module

Recomputes risk metrics for a portfolio, measures each applicable limit's
utilization and derives breaches, alerts, escalations, approval requests and
recommendations. Every run starts from scratch; nothing is carried over from
a previous monitoring cycle.

Rules
-----
1. LIMIT_WARNING  -- utilization >= warning threshold, not breached
2. LIMIT_BREACH   -- utilization >= breach threshold (hard or soft limit)
3. LOW_CAPACITY   -- less than 5% of the limit left
4. Escalation     -- utilization >= escalation threshold, routed by severity
"""

from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import Any, Mapping, Sequence
from uuid import uuid4

import numpy as np
import structlog

from ..models import MarketParameters, Position, RiskLimit
from ..results import Severity
from .metrics import build_covariance, parametric_var

logger = structlog.get_logger(__name__)

TRADING_DAYS = 252

ILLIQUID_ASSET_CLASSES = {'PRIVATE_EQUITY', 'HEDGE_FUND', 'REAL_ESTATE', 'COMMODITY'}
CREDIT_ASSET_CLASSES = {'FIXED_INCOME', 'CORPORATE_BOND'}

ROLE_BY_SEVERITY = {
    Severity.LOW: 'Risk Analyst',
    Severity.MEDIUM: 'Risk Manager',
    Severity.HIGH: 'Head of Risk',
    Severity.CRITICAL: 'Chief Risk Officer',
}

SLA_HOURS = {
    Severity.LOW: 24,
    Severity.MEDIUM: 8,
    Severity.HIGH: 4,
    Severity.CRITICAL: 1,
}

RESOLUTION_COST_MULTIPLIER = {
    Severity.LOW: 1,
    Severity.MEDIUM: 2,
    Severity.HIGH: 4,
    Severity.CRITICAL: 8,
}
BASE_RESOLUTION_COST = 10_000

BREACH_ACTIONS = {
    'VALUE_AT_RISK': [
        'Reduce portfolio risk through position sizing',
        'Hedge key risk factors',
        'Consider temporary limit increase approval',
    ],
    'CONCENTRATION': [
        'Diversify concentrated positions',
        'Reduce exposure to over-concentrated issuers',
        'Review position sizing limits',
    ],
    'CREDIT_RISK': [
        'Reduce credit exposure',
        'Increase credit quality of holdings',
        'Consider credit hedging strategies',
    ],
    'LIQUIDITY_RISK': [
        'Reduce allocation to illiquid assets',
        'Build a liquidity buffer in cash or near-cash holdings',
        'Review redemption and funding profile',
    ],
    'LEVERAGE': [
        'Reduce gross exposure',
        'Unwind offsetting long/short pairs',
        'Review financing arrangements',
    ],
}

UTILIZATION_ACTIONS = [
    'Monitor utilization closely',
    'Consider increasing limit if justified',
    'Implement early warning alerts',
    'Review portfolio composition',
]


def default_risk_limits(portfolio_id: str, as_of_date: date) -> list[RiskLimit]:
    """Standard limit set used when a portfolio has none configured."""
    effective = date(as_of_date.year - 1, 1, 1)
    expiry = date(as_of_date.year + 1, 12, 31)

    def _limit(suffix: str, name: str, limit_type: str, value: float, soft: float,
               method: str = 'ABSOLUTE', **thresholds: float) -> RiskLimit:
        return RiskLimit(
            id=f"{portfolio_id}_{suffix}",
            name=name,
            type=limit_type,
            entity_id=portfolio_id,
            limit_value=value,
            soft_limit_value=soft,
            measurement_method=method,
            effective_date=effective,
            expiry_date=expiry,
            **thresholds,
        )

    return [
        _limit('var_limit', 'Portfolio VaR Limit', 'VALUE_AT_RISK', 5_000_000, 4_000_000),
        _limit('concentration_limit', 'Single Issuer Concentration', 'CONCENTRATION', 0.10, 0.08, 'PERCENTAGE'),
        _limit('credit_limit', 'Credit Exposure Limit', 'CREDIT_RISK', 15_000_000, 12_000_000),
        _limit('liquidity_limit', 'Illiquid Assets Limit', 'LIQUIDITY_RISK', 0.20, 0.15, 'PERCENTAGE'),
        _limit('leverage_limit', 'Gross Leverage Limit', 'LEVERAGE', 2.0, 1.8, 'RATIO',
               warning_threshold=0.9, escalation_threshold=1.1),
    ]


def applicable_limits(limits: Sequence[RiskLimit], as_of_date: date) -> list[RiskLimit]:
    return [limit for limit in limits if limit.is_effective(as_of_date)]


# ---------------------------------------------------------------------------
# Current risk metrics
# ---------------------------------------------------------------------------


def issuer_concentrations(positions: Sequence[Position]) -> dict[str, float]:
    """Fraction of total value per issuer (symbol when the issuer is unknown)."""
    total = sum(p.market_value for p in positions)
    if total == 0:
        return {}
    shares: dict[str, float] = {}
    for p in positions:
        issuer = p.issuer or p.symbol
        shares[issuer] = shares.get(issuer, 0.0) + p.market_value / total
    return shares


def current_risk_metrics(
    positions: Sequence[Position],
    params: MarketParameters,
    as_of_date: date,
    overrides: Mapping[str, float] | None = None,
) -> list[dict[str, Any]]:
    """Risk metric values that limits are measured against.

    Percentage-style metrics (concentration, illiquid share) are fractions.
    Caller-supplied *overrides* replace the computed value of a metric type.
    """
    overrides = dict(overrides or {})
    values = np.array([p.market_value for p in positions], dtype=float)
    net = float(values.sum())
    gross = float(np.abs(values).sum())

    daily_cov = build_covariance(params.volatilities, params.correlation_array()) / TRADING_DAYS
    var_95 = (
        parametric_var(values, daily_cov, confidence=0.95, horizon_days=1, portfolio_value=1.0)
        if gross > 0 else 0.0
    )

    concentrations = issuer_concentrations(positions)
    credit = float(sum(p.market_value for p in positions if p.asset_class in CREDIT_ASSET_CLASSES))
    illiquid = float(sum(p.market_value for p in positions if p.asset_class in ILLIQUID_ASSET_CLASSES))

    metrics = [
        ('VALUE_AT_RISK', var_95, 'PARAMETRIC_95_1D', {'confidence_level': 0.95, 'horizon_days': 1.0}),
        ('CONCENTRATION', max(concentrations.values(), default=0.0), 'POSITION_WEIGHTED', concentrations),
        ('CREDIT_RISK', credit, 'EXPOSURE_WEIGHTED', {}),
        ('LIQUIDITY_RISK', illiquid / net if net > 0 else 0.0, 'LIQUIDITY_WEIGHTED', {}),
        ('LEVERAGE', gross / net if net > 0 else 0.0, 'GROSS_NOTIONAL', {'gross': gross, 'net': net}),
    ]

    result = []
    for metric_type, value, method, details in metrics:
        if metric_type in overrides:
            value = overrides.pop(metric_type)
            method = 'OVERRIDE'
        result.append({
            'metric_type': metric_type,
            'value': float(value),
            'as_of_date': as_of_date,
            'calculation_method': method,
            'details': details,
        })

    if overrides:
        logger.warning("current_risk_metrics: unknown metric overrides ignored", metrics=sorted(overrides))

    return result


# ---------------------------------------------------------------------------
# Utilization and breaches
# ---------------------------------------------------------------------------


def _as_pct(threshold: float) -> float:
    # 1.2 * 100 must compare equal to a 120.0 utilization
    return round(threshold * 100, 9)


def breach_severity(utilization_percentage: float) -> Severity:
    if utilization_percentage >= 150:
        return Severity.CRITICAL
    if utilization_percentage >= 120:
        return Severity.HIGH
    if utilization_percentage >= 100:
        return Severity.MEDIUM
    return Severity.LOW


def limit_utilization(limit: RiskLimit, current_value: float) -> dict[str, Any]:
    """Utilization of one limit; thresholds are fractions of the limit."""
    utilization = current_value * 100 / limit.limit_value
    soft_utilization = (
        current_value * 100 / limit.soft_limit_value if limit.soft_limit_value else utilization
    )

    return {
        'limit_id': limit.id,
        'limit_name': limit.name,
        'limit_type': limit.type,
        'limit_value': limit.limit_value,
        'soft_limit_value': limit.soft_limit_value,
        'current_value': current_value,
        'utilization_percentage': utilization,
        'soft_utilization_percentage': soft_utilization,
        'available_capacity': max(limit.limit_value - current_value, 0.0),
        'is_breached': utilization >= _as_pct(limit.breach_threshold),
        'is_soft_breached': (
            bool(limit.soft_limit_value) and soft_utilization >= _as_pct(limit.breach_threshold)
        ),
        'is_warning': utilization >= _as_pct(limit.warning_threshold),
        'requires_escalation': utilization >= _as_pct(limit.escalation_threshold),
    }


def breach_actions(limit_type: str, severity: Severity) -> list[str]:
    actions = list(BREACH_ACTIONS.get(limit_type, []))
    if severity is Severity.CRITICAL:
        actions.insert(0, 'IMMEDIATE ACTION REQUIRED')
    return actions


def identify_breaches(utilizations: Sequence[Mapping], now: datetime) -> list[dict[str, Any]]:
    """One breach record per hard or soft breached utilization."""
    breaches = []
    for u in utilizations:
        if not (u['is_breached'] or u['is_soft_breached']):
            continue

        hard = u['is_breached']
        reference = u['limit_value'] if hard else u['soft_limit_value']
        severity = breach_severity(u['utilization_percentage'])
        excess = u['current_value'] - reference

        breaches.append({
            'id': f"breach_{u['limit_id']}_{uuid4().hex[:8]}",
            'limit_id': u['limit_id'],
            'limit_name': u['limit_name'],
            'limit_type': u['limit_type'],
            'breach_type': 'HARD_LIMIT' if hard else 'SOFT_LIMIT',
            'severity': severity,
            'breach_value': u['current_value'],
            'limit_value': reference,
            'excess_amount': excess,
            'excess_percentage': excess / reference * 100,
            'utilization_percentage': u['utilization_percentage'],
            'breach_date': now,
            'is_escalated': u['requires_escalation'],
            'requires_approval': severity is not Severity.LOW,
            'recommended_actions': breach_actions(u['limit_type'], severity),
        })

    return breaches


def _make_alert(
    alert_type: str,
    severity: Severity,
    source: Mapping,
    message: str,
    description: str,
    current_value: float,
    limit_value: float,
    requires_action: bool,
    now: datetime,
) -> dict[str, Any]:
    return {
        'id': f"alert_{alert_type.lower()}_{source['limit_id']}_{uuid4().hex[:8]}",
        'type': alert_type,
        'severity': severity,
        'limit_id': source['limit_id'],
        'limit_name': source['limit_name'],
        'message': message,
        'description': description,
        'current_value': current_value,
        'limit_value': limit_value,
        'requires_action': requires_action,
        'created_at': now,
    }


def generate_alerts(
    utilizations: Sequence[Mapping],
    breaches: Sequence[Mapping],
    now: datetime,
    low_capacity_fraction: float = 0.05,
) -> list[dict[str, Any]]:
    alerts = []

    for b in breaches:
        alerts.append(_make_alert(
            'LIMIT_BREACH', b['severity'], b,
            f"{b['limit_name']} has been breached",
            f"Current value {b['breach_value']:,.2f} exceeds limit of {b['limit_value']:,.2f}",
            b['breach_value'], b['limit_value'], True, now,
        ))

    for u in utilizations:
        if u['is_warning'] and not (u['is_breached'] or u['is_soft_breached']):
            alerts.append(_make_alert(
                'LIMIT_WARNING', Severity.MEDIUM, u,
                f"{u['limit_name']} approaching limit",
                f"Current utilization {u['utilization_percentage']:.1f}% exceeds warning threshold",
                u['current_value'], u['limit_value'], False, now,
            ))

    for u in utilizations:
        if u['available_capacity'] < u['limit_value'] * low_capacity_fraction:
            alerts.append(_make_alert(
                'LOW_CAPACITY', Severity.MEDIUM, u,
                f"Low available capacity for {u['limit_name']}",
                f"Only {u['available_capacity']:,.2f} capacity remaining",
                u['current_value'], u['limit_value'], False, now,
            ))

    return alerts


def process_escalations(breaches: Sequence[Mapping], now: datetime) -> list[dict[str, Any]]:
    """Route escalated breaches to a role by severity with an SLA due date."""
    escalations = []
    for b in breaches:
        if not b['is_escalated']:
            continue
        severity = b['severity']
        role = ROLE_BY_SEVERITY[severity]
        escalations.append({
            'id': f"escalation_{b['id']}",
            'breach_id': b['id'],
            'limit_id': b['limit_id'],
            'limit_name': b['limit_name'],
            'severity': severity,
            'escalated_to': role,
            'escalation_reason': f"{b['limit_name']} breach at {b['utilization_percentage']:.1f}% requires {role} attention",
            'escalation_date': now,
            'due_date': now + timedelta(hours=SLA_HOURS[severity]),
        })
    return escalations


def required_approvals(breaches: Sequence[Mapping], now: datetime) -> list[dict[str, Any]]:
    approvals = []
    for b in breaches:
        if not b['requires_approval']:
            continue
        severity = b['severity']
        approvals.append({
            'id': f"approval_{b['id']}",
            'breach_id': b['id'],
            'limit_id': b['limit_id'],
            'limit_name': b['limit_name'],
            'required_approver': ROLE_BY_SEVERITY[severity],
            'approval_reason': f"Approval required for {b['limit_name']} breach",
            'request_date': now,
            'due_date': now + timedelta(hours=SLA_HOURS[severity]),
        })
    return approvals


def generate_recommendations(
    utilizations: Sequence[Mapping],
    breaches: Sequence[Mapping],
) -> list[dict[str, Any]]:
    recommendations = []

    for b in breaches:
        critical = b['severity'] is Severity.CRITICAL
        recommendations.append({
            'id': f"rec_breach_{b['id']}",
            'type': 'BREACH_RESOLUTION',
            'priority': 'HIGH' if critical else 'MEDIUM',
            'limit_id': b['limit_id'],
            'limit_name': b['limit_name'],
            'title': f"Resolve {b['limit_name']} Breach",
            'description': f"Immediate action required to bring {b['limit_name']} within acceptable limits",
            'actions': b['recommended_actions'],
            'implementation_timeframe': '1 hour' if critical else '1 business day',
            'estimated_cost': float(BASE_RESOLUTION_COST * RESOLUTION_COST_MULTIPLIER[b['severity']]),
            'risk_reduction': b['excess_amount'],
        })

    for u in utilizations:
        if u['is_warning'] and not u['is_breached']:
            recommendations.append({
                'id': f"rec_utilization_{u['limit_id']}",
                'type': 'UTILIZATION_MANAGEMENT',
                'priority': 'MEDIUM',
                'limit_id': u['limit_id'],
                'limit_name': u['limit_name'],
                'title': f"Manage {u['limit_name']} Utilization",
                'description': (
                    f"High utilization of {u['utilization_percentage']:.1f}% requires proactive management"
                ),
                'actions': list(UTILIZATION_ACTIONS),
                'implementation_timeframe': '1 week',
                'estimated_cost': float(BASE_RESOLUTION_COST),
                'risk_reduction': u['current_value'] * 0.1,
            })

    return recommendations


def consolidated_limits(
    limits: Sequence[RiskLimit],
    utilizations: Sequence[Mapping],
) -> list[dict[str, Any]]:
    """Per limit type totals and utilization spread."""
    by_type: dict[str, list[RiskLimit]] = {}
    for limit in limits:
        by_type.setdefault(limit.type, []).append(limit)

    consolidated = []
    for limit_type, typed in by_type.items():
        ids = {limit.id for limit in typed}
        typed_utils = [u for u in utilizations if u['limit_id'] in ids]
        pcts = [u['utilization_percentage'] for u in typed_utils]
        total_limit = float(sum(limit.limit_value for limit in typed))
        total_used = float(sum(u['current_value'] for u in typed_utils))

        consolidated.append({
            'limit_type': limit_type,
            'number_of_limits': len(typed),
            'total_limit_value': total_limit,
            'total_utilization': total_used,
            'utilization_percentage': total_used / total_limit * 100 if total_limit > 0 else 0.0,
            'available_capacity': total_limit - total_used,
            'number_of_breaches': sum(1 for u in typed_utils if u['is_breached']),
            'average_utilization': float(np.mean(pcts)) if pcts else 0.0,
            'max_utilization': max(pcts, default=0.0),
            'min_utilization': min(pcts, default=0.0),
        })

    return consolidated


def evaluate_limits(
    positions: Sequence[Position],
    params: MarketParameters,
    limits: Sequence[RiskLimit],
    as_of_date: date,
    now: datetime,
    overrides: Mapping[str, float] | None = None,
    low_capacity_fraction: float = 0.05,
) -> dict[str, Any]:
    """One monitoring cycle for a portfolio.

    Returns:
        Dict keyed like the computed fields of ``RiskLimitAssessment``
    """
    active = applicable_limits(limits, as_of_date)
    metrics = current_risk_metrics(positions, params, as_of_date, overrides)
    metric_by_type = {m['metric_type']: m['value'] for m in metrics}

    utilizations = [
        limit_utilization(limit, metric_by_type[limit.type])
        for limit in active
        if limit.type in metric_by_type
    ]
    breaches = identify_breaches(utilizations, now)
    alerts = generate_alerts(utilizations, breaches, now, low_capacity_fraction)
    escalations = process_escalations(breaches, now)
    approvals = required_approvals(breaches, now)

    for b in breaches:
        if b['severity'] is Severity.CRITICAL:
            logger.warning(
                "evaluate_limits: critical limit breach",
                limit_id=b['limit_id'],
                utilization=b['utilization_percentage'],
            )

    overall = float(np.mean([u['utilization_percentage'] for u in utilizations])) if utilizations else 0.0

    logger.info(
        "evaluate_limits: monitoring cycle complete",
        limits_monitored=len(active),
        breaches=len(breaches),
        alerts=len(alerts),
        escalations=len(escalations),
    )

    return {
        'total_limits_monitored': len(active),
        'total_breaches': len(breaches),
        'critical_breaches': sum(1 for b in breaches if b['severity'] is Severity.CRITICAL),
        'overall_utilization_percentage': overall,
        'risk_limits': list(active),
        'current_risk_metrics': metrics,
        'limit_utilizations': utilizations,
        'breaches': breaches,
        'alerts': alerts,
        'escalations': escalations,
        'approvals': approvals,
        'recommendations': generate_recommendations(utilizations, breaches),
        'consolidated_limits': consolidated_limits(active, utilizations),
    }


# ---------------------------------------------------------------------------
# Entity-wide report
# ---------------------------------------------------------------------------


def executive_summary(assessments: Sequence[Mapping]) -> str:
    count = len(assessments)
    total = sum(a['total_breaches'] for a in assessments)
    critical = sum(a['critical_breaches'] for a in assessments)

    if critical > 0:
        return f"URGENT: {critical} critical limit breaches require immediate attention across {count} portfolios."
    if total > 0:
        return f"{total} limit breaches identified across {count} portfolios requiring management attention."
    return f"All {count} portfolios operating within approved risk limits."


def key_risks(assessments: Sequence[Mapping]) -> list[str]:
    risks = []
    critical = sum(a['critical_breaches'] for a in assessments)
    if critical > 0:
        risks.append(f"{critical} critical limit breaches requiring immediate action")

    high = sum(1 for a in assessments if a['overall_utilization_percentage'] > 80)
    if high > 0:
        risks.append(f"{high} portfolios with high limit utilization (>80%)")

    return risks


def consolidated_recommendations(assessments: Sequence[Mapping]) -> list[str]:
    recommendations = []
    if any(a['total_breaches'] > 0 for a in assessments):
        recommendations.append('Prioritize resolution of limit breaches across all portfolios')
        recommendations.append('Review and update risk limit framework')

    high = sum(1 for a in assessments if a['overall_utilization_percentage'] > 70)
    if high > len(assessments) * 0.5:
        recommendations.append('Consider increasing limits or reducing risk across portfolio suite')

    return recommendations


def monitoring_report(assessments: Sequence[Mapping]) -> dict[str, Any]:
    """Roll portfolio assessments up into entity-wide report fields."""
    count = len(assessments)
    return {
        'portfolio_count': count,
        'total_limits_monitored': sum(a['total_limits_monitored'] for a in assessments),
        'total_breaches': sum(a['total_breaches'] for a in assessments),
        'total_critical_breaches': sum(a['critical_breaches'] for a in assessments),
        'overall_utilization_percentage': (
            float(np.mean([a['overall_utilization_percentage'] for a in assessments])) if count else 0.0
        ),
        'portfolio_assessments': [
            {
                'portfolio_id': a['portfolio_id'],
                'total_breaches': a['total_breaches'],
                'critical_breaches': a['critical_breaches'],
                'utilization_percentage': a['overall_utilization_percentage'],
            }
            for a in assessments
        ],
        'executive_summary': executive_summary(assessments),
        'key_risks': key_risks(assessments),
        'recommendations': consolidated_recommendations(assessments),
    }
