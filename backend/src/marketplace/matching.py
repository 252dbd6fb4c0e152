"""
Matching orchestrator.

Runs candidate selection and scoring for a task, applies the minimum score,
falls back to location-only matching when too few providers survive, and
returns a deterministic, truncated ranking.
"""
from typing import Dict, Any, List, Optional

from .candidates import CandidateSelector
from .config import config
from .errors import ValidationError
from .logging import logger
from .models import MatchingStrategy
from .repositories import ProviderDirectory, ServiceCatalog
from .scoring import score_provider, score_location_only


def rank(matches: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Highest score first, ties broken by provider id."""
    return sorted(matches, key=lambda m: (-m['totalScore'], m['providerId']))


def to_matched_provider(match: Dict[str, Any]) -> Dict[str, Any]:
    """Shape stored on the task's matchedProviders list."""
    return {
        'providerId': match['providerId'],
        'score': match['totalScore'],
        'matchedServiceIds': list(match.get('matchedServiceIds') or []),
        'reasons': list(match.get('reasons') or []),
        'distance': match.get('distance'),
    }


class MatchingOrchestrator:
    """
    Ranks providers for a task.

    Built once at process start with its collaborators; find_matches is a
    read-only computation and never writes the task.
    """

    def __init__(
        self,
        providers: ProviderDirectory,
        catalog: ServiceCatalog,
        settings: Optional[Dict[str, Any]] = None,
        selector: Optional[CandidateSelector] = None
    ):
        self.providers = providers
        self.catalog = catalog
        self.settings = settings or config.matching_settings()
        self.selector = selector or CandidateSelector(
            providers, catalog, self.settings.get('maxCandidates')
        )

    def _settings(self, overrides: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        settings = dict(self.settings)
        if overrides:
            settings.update(overrides)
        return settings

    def find_matches(
        self,
        task: Dict[str, Any],
        strategy: str = MatchingStrategy.INTELLIGENT,
        overrides: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """
        Find and rank providers for a task.

        Args:
            task: Task item
            strategy: 'intelligent' or 'location-only'
            overrides: Per-call settings merged over the configured ones

        Returns:
            dict: {
                'matches': ranked scoring results,
                'strategy': strategy actually used,
                'metadata': {totalMatches, averageMatchScore, searchTermsUsed,
                             fallbackTriggered, candidatesEvaluated},
                'criteria': snapshot stored on the task as matchingCriteria
            }
        """
        if strategy not in MatchingStrategy.ALL:
            raise ValidationError(f"Unknown matching strategy: {strategy}")

        settings = self._settings(overrides)
        search_terms = []
        fallback_triggered = False
        candidates_evaluated = 0
        matches = []

        if strategy == MatchingStrategy.INTELLIGENT:
            selection = self.selector.select(task, (overrides or {}).get('maxCandidates'))
            search_terms = selection['searchTerms']
            candidates_evaluated = len(selection['providers'])

            if not selection['useLocationOnly']:
                matches = self._score_intelligent(task, selection, settings)

            if len(matches) < settings['fallbackThreshold'] and settings.get('fallbackToLocationOnly', True):
                logger.info(
                    f"Task {task.get('taskId')}: {len(matches)} intelligent match(es) below "
                    f"threshold {settings['fallbackThreshold']}, falling back to location-only"
                )
                fallback_triggered = True
                strategy = MatchingStrategy.LOCATION_ONLY

        if strategy == MatchingStrategy.LOCATION_ONLY:
            location_providers = self.providers.find_in_area(
                task.get('location'), task.get('maxTravelDistanceKm')
            )
            candidates_evaluated = max(candidates_evaluated, len(location_providers))
            matches = self._score_location_only(task, location_providers)

        matches = matches[:settings['maxProvidersToReturn']]

        total = len(matches)
        average = round(sum(m['totalScore'] for m in matches) / total) if total else 0

        logger.info(
            f"Task {task.get('taskId')}: {total} match(es) using {strategy}"
            f"{' (fallback)' if fallback_triggered else ''}"
        )

        return {
            'matches': matches,
            'strategy': strategy,
            'metadata': {
                'totalMatches': total,
                'averageMatchScore': average,
                'searchTermsUsed': search_terms,
                'fallbackTriggered': fallback_triggered,
                'candidatesEvaluated': candidates_evaluated,
            },
            'criteria': {
                'strategy': strategy,
                'useLocationOnly': strategy == MatchingStrategy.LOCATION_ONLY,
                'fallbackTriggered': fallback_triggered,
                'searchTerms': search_terms,
                'categoryMatch': bool(task.get('category')) and any(
                    m['scoreBreakdown'].get('categoryMatch', 0) > 0 for m in matches
                ),
            },
        }

    def _score_intelligent(
        self,
        task: Dict[str, Any],
        selection: Dict[str, Any],
        settings: Dict[str, Any]
    ) -> List[Dict[str, Any]]:
        minimum = settings['minimumMatchScore']
        weights = settings.get('weights') or None
        services_by_provider = selection['servicesByProvider']

        matches = []
        for provider in selection['providers']:
            result = score_provider(
                task,
                provider,
                services_by_provider.get(provider['providerId'], []),
                weights
            )
            if result['totalScore'] >= minimum:
                matches.append(result)

        return rank(matches)

    def _score_location_only(self, task: Dict[str, Any], providers: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        matches = []
        for provider in providers:
            result = score_location_only(task, provider)
            # Providers past the travel limit or every distance band have nothing to offer
            if result['totalScore'] > 0:
                matches.append(result)
        return rank(matches)
