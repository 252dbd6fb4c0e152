"""
Candidate selection.

Bounds the set of providers handed to the scoring engine: providers in the
task's region, united with providers whose catalog overlaps the task's
keywords, tags or category.
"""
from typing import Dict, Any, List

from .config import config
from .location import distance_between
from .logging import logger
from .repositories import ProviderDirectory, ServiceCatalog
from .utils import normalize_text

MIN_TERM_LENGTH = 3

STOP_WORDS = {
    'the', 'and', 'for', 'with', 'need', 'want', 'looking', 'find', 'someone',
    'help', 'can', 'will', 'would', 'should', 'could', 'have', 'has', 'had',
    'this', 'that', 'these', 'those', 'who', 'what', 'where', 'when', 'why', 'how',
}


def extract_search_terms(task: Dict[str, Any]) -> List[str]:
    """
    Extract meaningful search terms from task title and description.
    Lower-cased, punctuation stripped, stop words and short tokens dropped,
    de-duplicated in first-seen order.
    """
    text = normalize_text(f"{task.get('title') or ''} {task.get('description') or ''}")
    terms = []
    for word in text.split():
        if len(word) < MIN_TERM_LENGTH or word in STOP_WORDS:
            continue
        if word not in terms:
            terms.append(word)
    return terms


def service_matches(service: Dict[str, Any], task: Dict[str, Any], terms: List[str]) -> bool:
    """True if the service overlaps the task's keywords, tags or category."""
    service_tags = {t.lower() for t in (service.get('tags') or [])}
    task_tags = {t.lower() for t in (task.get('tags') or [])}

    if task.get('category') and service.get('categoryId') == task['category']:
        return True
    if task_tags & service_tags:
        return True
    if not terms:
        return False

    haystack = f"{normalize_text(service.get('title'))} {normalize_text(service.get('description'))}"
    return any(term in haystack or term in service_tags for term in terms)


def group_by_provider(services: List[Dict[str, Any]]) -> Dict[str, List[Dict[str, Any]]]:
    """Group services by provider id; a service may be offered by several providers."""
    grouped = {}
    for service in sorted(services, key=lambda s: s['serviceId']):
        for provider_id in service.get('providerIds') or []:
            if not provider_id:
                continue
            grouped.setdefault(provider_id, []).append(service)
    return grouped


class CandidateSelector:
    """Pre-filter that decides which providers are worth scoring."""

    def __init__(self, providers: ProviderDirectory, catalog: ServiceCatalog, max_candidates: int = None):
        self.providers = providers
        self.catalog = catalog
        self.max_candidates = max_candidates or config.MAX_CANDIDATES

    def location_filtered(self, task: Dict[str, Any]) -> List[Dict[str, Any]]:
        if task.get('isRemote'):
            return []

        location = task.get('location') or {}
        providers = self.providers.find_by_region(location.get('region'))

        max_distance = task.get('maxTravelDistanceKm')
        if max_distance is not None:
            kept = []
            for provider in providers:
                distance = distance_between(location, provider.get('location'))
                if distance is None or distance <= float(max_distance):
                    kept.append(provider)
            providers = kept

        return providers

    def select(self, task: Dict[str, Any], max_candidates: int = None) -> Dict[str, Any]:
        """
        Build the candidate set for a task.

        max_candidates bounds this call only; the selector's own bound applies
        when it is None.

        Returns:
            dict: {
                'providers': list of provider items (service-matched first, then by id),
                'servicesByProvider': {providerId: [services]},
                'searchTerms': extracted keywords,
                'useLocationOnly': True when no provider's catalog overlaps the task
            }
        """
        terms = extract_search_terms(task)

        matching_services = [s for s in self.catalog.list_active() if service_matches(s, task, terms)]
        services_by_provider = group_by_provider(matching_services)
        service_matched = self.providers.get_many(list(services_by_provider.keys()))

        if not service_matched:
            logger.info(f"No catalog overlap for task {task.get('taskId')}, signalling location-only")
            return {
                'providers': [],
                'servicesByProvider': {},
                'searchTerms': terms,
                'useLocationOnly': True,
            }

        candidates = {p['providerId']: p for p in service_matched}
        for provider in self.location_filtered(task):
            candidates.setdefault(provider['providerId'], provider)

        ordered = sorted(
            candidates.values(),
            key=lambda p: (p['providerId'] not in services_by_provider, p['providerId'])
        )
        limit = max_candidates or self.max_candidates
        if len(ordered) > limit:
            logger.info(f"Truncating {len(ordered)} candidates to {limit}")
            ordered = ordered[:limit]

        return {
            'providers': ordered,
            'servicesByProvider': {
                pid: services for pid, services in services_by_provider.items() if pid in candidates
            },
            'searchTerms': terms,
            'useLocationOnly': False,
        }
