"""
Tests for candidate selection.
"""
from marketplace.candidates import CandidateSelector, extract_search_terms, service_matches
from fakes import (
    InMemoryProviderDirectory,
    InMemoryServiceCatalog,
    make_location,
    make_provider,
    make_service,
    task_input,
)

KUMASI = make_location('Adum', 'Kumasi', 'Ashanti')


def selector(providers, services, max_candidates=None):
    return CandidateSelector(InMemoryProviderDirectory(providers), InMemoryServiceCatalog(services), max_candidates)


class TestSearchTerms:
    """Tests for keyword extraction."""

    def test_drops_stop_words_and_short_tokens(self):
        task = {'title': 'Need help to fix the leaking pipe!', 'description': 'Leaking pipe in kitchen'}
        assert extract_search_terms(task) == ['fix', 'leaking', 'pipe', 'kitchen']

    def test_empty_text(self):
        assert extract_search_terms({'title': None, 'description': ''}) == []


class TestServiceMatching:
    """Tests for the catalog overlap predicate."""

    def test_keyword_in_title(self):
        service = make_service('s1', ['p1'], title='Pipe repair')
        assert service_matches(service, {'tags': [], 'category': None}, ['pipe']) is True

    def test_tag_overlap_is_case_insensitive(self):
        service = make_service('s1', ['p1'], title='Misc', tags=['Plumbing'])
        assert service_matches(service, {'tags': ['plumbing']}, []) is True

    def test_category(self):
        service = make_service('s1', ['p1'], title='Misc', category='cat-plumbing')
        assert service_matches(service, {'category': 'cat-plumbing'}, []) is True

    def test_no_overlap(self):
        service = make_service('s1', ['p1'], title='House painting', tags=['paint'])
        assert service_matches(service, {'tags': ['plumbing']}, ['pipe']) is False


class TestSelection:
    """Tests for the union of location- and service-matched providers."""

    def test_union_service_matched_first(self):
        """Region providers and catalog providers are united; catalog matches lead."""
        providers = [
            make_provider('provider-1'),
            make_provider('provider-2'),
            make_provider('provider-3', location=KUMASI),
            make_provider('provider-4', location=KUMASI),
        ]
        services = [
            make_service('service-1', ['provider-1'], title='Pipe repair', tags=['plumbing']),
            make_service('service-3', ['provider-3'], title='Leak detection', tags=['leak']),
        ]
        selection = selector(providers, services).select(task_input(taskId='task-1'))

        assert [p['providerId'] for p in selection['providers']] == ['provider-1', 'provider-3', 'provider-2']
        assert sorted(selection['servicesByProvider']) == ['provider-1', 'provider-3']
        assert selection['useLocationOnly'] is False

    def test_no_catalog_overlap_signals_location_only(self):
        providers = [make_provider('provider-1'), make_provider('provider-2')]
        services = [make_service('service-1', ['provider-1'], title='House painting', tags=['paint'])]
        task = task_input(title='Obscure xyzzy', description='Frobnicate quux', tags=['xyzzy'], category='cat-none')

        selection = selector(providers, services).select(task)

        assert selection['useLocationOnly'] is True
        assert selection['providers'] == []
        assert selection['searchTerms'] == ['obscure', 'xyzzy', 'frobnicate', 'quux']

    def test_inactive_services_are_ignored(self):
        services = [make_service('service-1', ['provider-1'], title='Pipe repair', isActive=False)]
        selection = selector([make_provider('provider-1')], services).select(task_input())
        assert selection['useLocationOnly'] is True

    def test_remote_task_skips_region_filter(self):
        providers = [
            make_provider('provider-1', location=KUMASI),
            make_provider('provider-2'),
        ]
        services = [make_service('service-1', ['provider-1'], tags=['plumbing'])]
        selection = selector(providers, services).select(task_input(isRemote=True))
        assert [p['providerId'] for p in selection['providers']] == ['provider-1']

    def test_gps_travel_limit_filters_region_providers(self):
        """Region providers beyond maxTravelDistanceKm are dropped before scoring."""
        here = make_location(gps=(5.556, -0.182))
        providers = [
            make_provider('provider-1', location=make_location(gps=(5.560, -0.182))),
            make_provider('provider-near', location=make_location(gps=(5.570, -0.182))),
            make_provider('provider-far', location=make_location(gps=(6.000, -0.182))),
        ]
        services = [make_service('service-1', ['provider-1'], tags=['plumbing'])]
        task = task_input(location=here, maxTravelDistanceKm=10)

        selection = selector(providers, services).select(task)

        assert [p['providerId'] for p in selection['providers']] == ['provider-1', 'provider-near']

    def test_candidate_bound(self):
        providers = [make_provider(f'provider-{i}') for i in range(5)]
        services = [make_service('service-1', ['provider-0'], tags=['plumbing'])]
        selection = selector(providers, services, max_candidates=3).select(task_input())
        assert len(selection['providers']) == 3
        assert selection['providers'][0]['providerId'] == 'provider-0'

    def test_shared_service_groups_under_each_provider(self):
        services = [make_service('service-1', ['provider-1', 'provider-2'], tags=['plumbing'])]
        providers = [make_provider('provider-1'), make_provider('provider-2')]
        selection = selector(providers, services).select(task_input())
        assert [s['serviceId'] for s in selection['servicesByProvider']['provider-2']] == ['service-1']
