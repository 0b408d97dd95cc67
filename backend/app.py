from flask import Flask, request, jsonify
from flask_cors import CORS
import requests

from candidate_selector import score_candidate
from curator_settings import CuratorSettings
from media_curator import calculate_visual_pacing, curate_stored_project
from media_models import (
    DEFAULT_PROVIDER_PRIORITY,
    MediaKind,
    Provider,
    ProviderError,
    RateLimitExceeded,
    SceneContext,
    SceneMediaRequest,
)
from media_sources import create_media_sources
from media_store import MediaStore
from rate_limit_governor import RateLimitGovernor


MAX_SEARCH_LIMIT = 50

_KIND_PARAM = {
    'image': [MediaKind.IMAGE],
    'video': [MediaKind.VIDEO],
    'both': [MediaKind.IMAGE, MediaKind.VIDEO],
}


def _parse_sources(raw):
    """['pexels', 'googlePlaces'] -> [Provider...]; unknown names are ignored."""
    if not raw:
        return list(DEFAULT_PROVIDER_PRIORITY)
    aliases = {p.value: p for p in DEFAULT_PROVIDER_PRIORITY}
    aliases.update({'googleplaces': Provider.GOOGLE_PLACES, 'places': Provider.GOOGLE_PLACES})
    out = []
    for name in raw:
        key = str(name or '').strip().lower().replace('-', '_')
        p = aliases.get(key) or aliases.get(key.replace('_', ''))
        if p and p not in out:
            out.append(p)
    return out


def create_app(settings=None, session=None, sources=None, governor=None, verbose=True):
    """
    Flask app factory. Settings, HTTP session and provider sources are built once
    per app and shared by every route, so rate windows span requests; tests pass fakes.
    """
    settings = settings if settings is not None else CuratorSettings.from_env()
    session = session if session is not None else requests.Session()
    if governor is None:
        governor = RateLimitGovernor(budgets=settings.rate_budgets, verbose=verbose)
    if sources is None:
        sources = create_media_sources(
            settings.api_keys,
            governor,
            session=session,
            search_timeout_sec=settings.search_timeout_sec,
            places_timeout_sec=settings.places_timeout_sec,
            verbose=verbose,
        )
    store = MediaStore(settings.store_dir)

    app = Flask(__name__)
    CORS(app)  # Frontend runs on a different port

    @app.route('/api/health')
    def health_check():
        return jsonify({
            'status': 'healthy',
            'service': 'media-curator',
            'providers': settings.providers_configured(),
            'rateLimits': governor.status(),
        })

    @app.route('/api/media/search', methods=['POST'])
    def media_search():
        """
        Normalized candidates from the requested providers, sorted by relevance. No downloads.
        Body: {query, kind: image|video|both, sources[], limit}
        """
        data = request.get_json(silent=True) or {}
        query = str(data.get('query') or '').strip()
        if not query:
            return jsonify({'success': False, 'error': 'Field "query" is required'}), 400

        kind_name = str(data.get('kind') or 'both').strip().lower()
        kinds = _KIND_PARAM.get(kind_name)
        if kinds is None:
            return jsonify({'success': False, 'error': f'Unknown kind "{kind_name}" (image|video|both)'}), 400
        try:
            limit = max(1, min(MAX_SEARCH_LIMIT, int(data.get('limit') or 10)))
        except (TypeError, ValueError):
            return jsonify({'success': False, 'error': 'Field "limit" must be a number'}), 400

        providers = [p for p in _parse_sources(data.get('sources')) if p in sources]
        if not providers:
            return jsonify({'success': False, 'error': 'No configured media provider matches "sources"'}), 400

        print(f"🔍 Media search: '{query}' kind={kind_name} providers={[p.value for p in providers]}")
        candidates = []
        failed = {}
        for provider in providers:
            for kind in kinds:
                try:
                    candidates.extend(sources[provider].search(query, kind=kind, limit=limit))
                except RateLimitExceeded as e:
                    failed[provider.value] = f'rate_limited: retry after {e.retry_after:.0f}s'
                    break
                except ProviderError as e:
                    failed[provider.value] = f'provider_error: {e.cause}'
                    break

        scene = SceneMediaRequest(
            scene_number=1,
            search_keywords=(query,),
            pacing=calculate_visual_pacing('', 0),
            scene_context=SceneContext(purpose='', emotional_tone='', title=query, duration_sec=0.0),
        )
        scored = [score_candidate(c, scene, providers) for c in candidates]
        scored.sort(key=lambda s: (-s.relevance_score, -s.total_score, s.candidate.id))

        if failed:
            print(f"⚠️  Media search provider failures: {failed}")
        return jsonify({
            'success': True,
            'query': query,
            'count': len(scored),
            'candidates': [s.to_dict() for s in scored],
            'failedProviders': failed,
        })

    @app.route('/api/media/curate', methods=['POST'])
    def media_curate():
        """
        Curate media for every scene of a stored project.
        Body: {projectId}
        """
        data = request.get_json(silent=True) or {}
        project_id = str(data.get('projectId') or '').strip()
        if not project_id:
            return jsonify({'success': False, 'error': 'Field "projectId" is required'}), 400

        try:
            if not store.exists(project_id):
                return jsonify({'success': False, 'error': f'Scene context not found for project {project_id}'}), 400
            print(f"🎬 Media curation started: {project_id}")
            report = curate_stored_project(
                store, project_id, settings,
                session=session, governor=governor, sources=sources, verbose=verbose,
            )
        except ValueError as e:
            print(f"❌ Media curation rejected: {e}")
            return jsonify({'success': False, 'error': str(e)}), 400
        except OSError as e:
            print(f"❌ Media curation storage error: {e}")
            return jsonify({'success': False, 'error': f'Storage error: {e}'}), 500

        print(f"✅ Media curation done: {project_id} ({report['realDownloads']}/{report['totalAssets']} real)")
        return jsonify({'success': True, **report})

    return app


if __name__ == '__main__':
    _settings = CuratorSettings.from_env()
    app = create_app(_settings)
    print("🎞️  Media Curator Backend")
    print("📂 Store folder:", _settings.store_dir)
    print(f"🌐 Server: http://localhost:{_settings.port}")
    app.run(debug=False, host='0.0.0.0', port=_settings.port, use_reloader=False)
