"""
Pytest configuration for backend tests.

Why: Force AnyIO to use the asyncio backend to avoid sandbox restrictions
that can affect the Trio backend (e.g., socketpair permission errors), and
reset module-level singletons (repos, session stores, caches, throttle) so
tests never leak state into each other.
"""
import os
import sys
from pathlib import Path

import pytest

# Ensure the repository root is importable (`backend.*` imports) across tests
REPO_ROOT = Path(__file__).resolve().parents[2]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture(autouse=True)
def _clear_env_toggles(monkeypatch: pytest.MonkeyPatch):
    """Start each test in a permissive dev environment.

    Why:
        Several tests opt into prod semantics (strict CSRF, HSTS, config
        guard). Clearing the toggles keeps a forgotten cleanup from leaking
        into unrelated tests in a full run.
    """
    for var in (
        "GANUI_ENV",
        "GANUI_TRUST_PROXY",
        "STRICT_CSRF_ADMIN",
        "STRICT_CSRF_STUDY",
        "STRICT_CSRF_AUTH",
        "SESSION_TTL_SECONDS",
        "SUPABASE_URL",
        "SUPABASE_JWT_SECRET",
        "SUPABASE_JWT_AUDIENCE",
    ):
        monkeypatch.delenv(var, raising=False)
    if not os.getenv("SUPABASE_SERVICE_ROLE_KEY"):
        monkeypatch.setenv("SUPABASE_SERVICE_ROLE_KEY", "TEST_ONLY_NOT_USED")
    yield


@pytest.fixture(autouse=True)
def _reset_web_state():
    """Swap in in-memory repos and fresh stores for every test.

    Behavior:
        - Curation and study repos become in-memory; the study repo resolves
          lecture/video snapshots from the same curation repo.
        - Session store, edit-session registry, catalog cache and progress
          throttle start empty; profiles are in-memory.
    """
    from backend.curation.repo_memory import InMemoryCurationRepo
    from backend.curation.session import EditSessionStore
    from backend.identity_access.profiles import InMemoryProfileDirectory
    from backend.identity_access.stores import SessionStore
    from backend.study.progress import ProgressThrottle
    from backend.study.repo_memory import InMemoryStudyRepo
    from backend.web import main, repo_wiring
    from backend.web.routes import admin, study

    curation = InMemoryCurationRepo()
    repo_wiring.set_curation_repo(curation)
    repo_wiring.set_study_repo(InMemoryStudyRepo(catalog=curation))
    repo_wiring.set_profile_directory(InMemoryProfileDirectory())
    main.SESSION_STORE = SessionStore()
    main.SETTINGS.override_environment(None)
    admin.set_edit_session_store(EditSessionStore())
    study.set_progress_throttle(ProgressThrottle(10))
    yield
