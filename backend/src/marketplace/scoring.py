"""
Provider scoring engine.

Computes a composite 0-100 match score for one (task, provider, services)
tuple. Each slot is scored independently and the weights are configuration;
DEFAULT_WEIGHTS is the reference weighting.
"""
from typing import Dict, Any, List, Optional

from .location import score_location, area_match, LOCALITY, CITY, REGION
from .utils import parse_iso

DEFAULT_WEIGHTS = {
    'serviceRelevance': 30,
    'tagMatch': 20,
    'categoryMatch': 10,
    'locationProximity': 25,
    'budgetFit': 10,
    'companyTrained': 5,
    'idVerified': 5,
    'availability': 5,
    'depositPolicy': 5,
}

# (max % difference, fraction of slot)
BUDGET_BANDS = [
    (10, 1.0),
    (20, 0.8),
    (30, 0.6),
    (50, 0.4),
]
BUDGET_MINIMAL_FRACTION = 0.1

# Slot scores above these thresholds produce a reason line
MEANINGFUL_TAG_FRACTION = 0.5
MEANINGFUL_LOCATION_FRACTION = 0.5

WEEKDAYS = ('monday', 'tuesday', 'wednesday', 'thursday', 'friday', 'saturday', 'sunday')


def resolve_weights(overrides: Optional[Dict[str, float]] = None) -> Dict[str, float]:
    weights = dict(DEFAULT_WEIGHTS)
    if overrides:
        weights.update(overrides)
    return weights


def _task_tags(task: Dict[str, Any]) -> List[str]:
    return [t.lower() for t in (task.get('tags') or []) if t]


def _service_tags(services: List[Dict[str, Any]]) -> set:
    return {t.lower() for s in services for t in (s.get('tags') or []) if t}


def _is_sparse(task: Dict[str, Any]) -> bool:
    """No tags and no category: nothing to fail against."""
    return not _task_tags(task) and not task.get('category')


def service_relevance_fraction(task: Dict[str, Any], services: List[Dict[str, Any]]) -> float:
    if _is_sparse(task):
        return 1.0
    category = task.get('category')
    tags = set(_task_tags(task))
    for service in services:
        if category and service.get('categoryId') == category:
            return 1.0
        if tags & {t.lower() for t in (service.get('tags') or [])}:
            return 1.0
    return 0.0


def tag_fraction(task: Dict[str, Any], services: List[Dict[str, Any]]) -> float:
    if _is_sparse(task):
        return 1.0
    tags = _task_tags(task)
    if not tags:
        return 0.0
    offered = _service_tags(services)
    matching = [t for t in tags if t in offered]
    return len(matching) / len(tags)


def category_fraction(task: Dict[str, Any], services: List[Dict[str, Any]]) -> float:
    if _is_sparse(task):
        return 1.0
    category = task.get('category')
    if not category:
        return 0.0
    return 1.0 if any(s.get('categoryId') == category for s in services) else 0.0


def target_budget(task: Dict[str, Any]) -> Optional[float]:
    """Midpoint of the budget range, or the single bound that is set."""
    budget = task.get('budget') or {}
    low = budget.get('min')
    high = budget.get('max')
    if low is not None and high is not None:
        return (float(low) + float(high)) / 2
    if high is not None:
        return float(high)
    if low is not None:
        return float(low)
    return None


def average_price(services: List[Dict[str, Any]]) -> Optional[float]:
    prices = [float(s['basePrice']) for s in services if s.get('basePrice') is not None]
    if not prices:
        return None
    return sum(prices) / len(prices)


def budget_fraction(task: Dict[str, Any], services: List[Dict[str, Any]]) -> float:
    """
    Compare the task's target budget with the provider's average price.

    A task without a budget is flexible and gets the full slot; a provider
    without prices cannot be compared and gets half.
    """
    target = target_budget(task)
    if target is None:
        return 1.0
    price = average_price(services)
    if price is None:
        return 0.5
    if target == 0:
        return 1.0 if price == 0 else BUDGET_MINIMAL_FRACTION
    difference_pct = abs(price - target) / target * 100
    for limit, fraction in BUDGET_BANDS:
        if difference_pct <= limit:
            return fraction
    return BUDGET_MINIMAL_FRACTION


def covers_requested_slot(provider: Dict[str, Any], schedule: Optional[Dict[str, Any]]) -> bool:
    """True if the provider's working hours cover the task's requested slot."""
    if provider.get('isAlwaysAvailable'):
        return True
    schedule = schedule or {}
    preferred = parse_iso(schedule.get('preferredDate'))
    slot = schedule.get('timeSlot') or {}
    hours = provider.get('workingHours') or {}
    if not preferred or not slot.get('start') or not slot.get('end'):
        return False
    window = hours.get(WEEKDAYS[preferred.weekday()])
    if not window:
        return False
    return window['start'] <= slot['start'] and slot['end'] <= window['end']


def _bonus(has_attribute: bool, points: float) -> float:
    return float(points) if has_attribute else 0.0


def score_provider(
    task: Dict[str, Any],
    provider: Dict[str, Any],
    services: List[Dict[str, Any]],
    weights: Optional[Dict[str, float]] = None
) -> Dict[str, Any]:
    """
    Score a provider against a task.

    Args:
        task: Task item
        provider: Provider item
        services: The provider's services already found relevant to the task
        weights: Optional slot weights merged over DEFAULT_WEIGHTS

    Returns:
        dict: {
            'providerId': str,
            'totalScore': int (0-100),
            'reasons': list of display strings,
            'scoreBreakdown': dict of slot scores,
            'matchedServiceIds': list of service ids,
            'distance': float or None
        }
    """
    weights = resolve_weights(weights)

    location_score, distance = score_location(
        task.get('location'),
        provider.get('location'),
        weights['locationProximity'],
        max_distance_km=task.get('maxTravelDistanceKm'),
        remote=bool(task.get('isRemote'))
    )

    breakdown = {
        'serviceRelevance': weights['serviceRelevance'] * service_relevance_fraction(task, services),
        'tagMatch': weights['tagMatch'] * tag_fraction(task, services),
        'categoryMatch': weights['categoryMatch'] * category_fraction(task, services),
        'locationProximity': location_score,
        'budgetFit': weights['budgetFit'] * budget_fraction(task, services),
        'companyTrained': _bonus(
            bool(provider.get('isCompanyTrained')), weights['companyTrained']),
        'idVerified': _bonus(
            bool(provider.get('isIdVerified')), weights['idVerified']),
        'availability': _bonus(
            covers_requested_slot(provider, task.get('schedule')),
            weights['availability']),
        'depositPolicy': _bonus(
            bool(provider.get('requireInitialDeposit')), weights['depositPolicy']),
    }
    breakdown = {slot: round(value, 2) for slot, value in breakdown.items()}

    total = round(sum(breakdown.values()))
    if violates_requirements(task, provider):
        total = 0

    return {
        'providerId': provider['providerId'],
        'totalScore': max(0, min(100, int(total))),
        'reasons': build_reasons(task, provider, services, breakdown, weights),
        'scoreBreakdown': breakdown,
        'matchedServiceIds': sorted(s['serviceId'] for s in services),
        'distance': round(distance, 2) if distance is not None else None,
    }


def violates_requirements(task: Dict[str, Any], provider: Dict[str, Any]) -> bool:
    """A task that explicitly requires a trust attribute excludes providers lacking it."""
    requirements = task.get('requirements') or {}
    if requirements.get('companyTrained') and not provider.get('isCompanyTrained'):
        return True
    if requirements.get('idVerified') and not provider.get('isIdVerified'):
        return True
    if requirements.get('alwaysAvailable') and not covers_requested_slot(provider, task.get('schedule')):
        return True
    return False


def build_reasons(
    task: Dict[str, Any],
    provider: Dict[str, Any],
    services: List[Dict[str, Any]],
    breakdown: Dict[str, float],
    weights: Dict[str, float]
) -> List[str]:
    """Human-readable reasons, display only. Order is fixed."""
    reasons = []
    task_location = task.get('location') or {}

    # Service relevance
    if services and breakdown['serviceRelevance'] > 0:
        reasons.append(f"Offers {len(services)} relevant service(s)")

    # Proximity
    if task.get('isRemote'):
        reasons.append("Can work remotely")
    elif breakdown['locationProximity'] >= weights['locationProximity'] * MEANINGFUL_LOCATION_FRACTION:
        match = area_match(task_location, provider.get('location'))
        if match == LOCALITY:
            reasons.append(f"Located in {task_location.get('locality')}")
        elif match == CITY:
            reasons.append(f"Located in {task_location.get('city')}")
        elif match == REGION:
            reasons.append(f"Serves {task_location.get('region')}")
        else:
            reasons.append("Nearby")

    # Skill / tag match
    if _task_tags(task) and breakdown['tagMatch'] >= weights['tagMatch'] * MEANINGFUL_TAG_FRACTION:
        reasons.append("Service tags match your requirements")

    # Category match
    if task.get('category') and breakdown['categoryMatch'] > 0:
        reasons.append("Service category matches")

    # Trust attributes
    if provider.get('isCompanyTrained'):
        reasons.append("Company trained")
    if provider.get('isIdVerified'):
        reasons.append("Verified ID")
    if provider.get('isAlwaysAvailable'):
        reasons.append("Available anytime")
    if (provider.get('location') or {}).get('isAddressVerified'):
        reasons.append("Verified address")

    return reasons or ["Available in your area"]


def score_location_only(task: Dict[str, Any], provider: Dict[str, Any]) -> Dict[str, Any]:
    """
    Location-only score on a 100-point scale (locality 100, city 70, region 50,
    or the GPS distance bands when both sides have coordinates).
    """
    location_score, distance = score_location(
        task.get('location'),
        provider.get('location'),
        100,
        max_distance_km=task.get('maxTravelDistanceKm'),
        remote=bool(task.get('isRemote'))
    )

    reasons = ["Available in your area"]
    if provider.get('isCompanyTrained'):
        reasons.append("Company trained")
    if provider.get('isAlwaysAvailable'):
        reasons.append("Available anytime")
    if (provider.get('location') or {}).get('isAddressVerified'):
        reasons.append("Verified address")

    return {
        'providerId': provider['providerId'],
        'totalScore': max(0, min(100, int(round(location_score)))),
        'reasons': reasons,
        'scoreBreakdown': {'locationProximity': round(location_score, 2)},
        'matchedServiceIds': [],
        'distance': round(distance, 2) if distance is not None else None,
    }
