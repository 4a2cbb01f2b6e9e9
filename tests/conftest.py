"""Shared test fixtures for the toolwarden test suite."""

import pytest

from toolwarden.config import DomainsConfig, StorageConfig, WardenConfig
from toolwarden.security.domains import DomainValidator
from toolwarden.storage.session_store import SessionStore
from toolwarden.tools.router import HandlerRouter, MediationContext

SAFE_DOMAINS = """\
# test safe list
github.com
pypi.org   # package index
*.readthedocs.io
"""

SENSITIVE_DOMAINS = """\
pastebin.com
webhook.site
"""

BLOCKED_DOMAINS = """\
evil.example
"""


@pytest.fixture(autouse=True)
def isolated_home(tmp_path, monkeypatch):
    """Keep every test away from the real ~/.toolwarden."""
    home = tmp_path / "warden-home"
    monkeypatch.setenv("TOOLWARDEN_HOME", str(home))
    monkeypatch.delenv("TOOLWARDEN_CONFIG", raising=False)
    monkeypatch.delenv("TOOLWARDEN_SESSION_ID", raising=False)
    return home


@pytest.fixture
def store():
    s = SessionStore(":memory:", session_id="test-session")
    yield s
    s.close()


@pytest.fixture
def domain_dir(tmp_path):
    d = tmp_path / "security"
    d.mkdir()
    (d / "system-safe-domains.conf").write_text(SAFE_DOMAINS)
    (d / "system-sensitive-domains.conf").write_text(SENSITIVE_DOMAINS)
    (d / "custom-blocked-domains.conf").write_text(BLOCKED_DOMAINS)
    return d


@pytest.fixture
def validator(domain_dir):
    return DomainValidator(domain_dir)


@pytest.fixture
def config(tmp_path, domain_dir):
    return WardenConfig(
        domains=DomainsConfig(config_dir=str(domain_dir)),
        storage=StorageConfig(db_url=str(tmp_path / "state.db")),
    )


@pytest.fixture
def context(config):
    ctx = MediationContext.from_config(config, session_id="test-session")
    yield ctx
    ctx.close()


@pytest.fixture
def router(context):
    r = HandlerRouter(context)
    r.init()
    return r
