import nox

PYTHON_VERSIONS = ["3.11", "3.12", "3.13"]

# psycopg2 ships a compiled extension; reinstall it per interpreter so a
# cached wheel built for another Python is never reused.
_NATIVE_PACKAGES = ["psycopg2-binary"]

nox.options.sessions = ["tests"]


def _install(session: nox.Session) -> None:
    """Install marketplace-settlement with its test extra."""
    session.run("poetry", "install", "--all-extras", external=True)
    session.run("pip", "install", "--force-reinstall", "--no-cache-dir", *_NATIVE_PACKAGES)


@nox.session(python=PYTHON_VERSIONS)
def tests(session: nox.Session) -> None:
    """Full suite: domain, application, API and scenarios."""
    _install(session)
    session.run("pytest", *session.posargs)


@nox.session(python=PYTHON_VERSIONS[-1])
def tests_domain(session: nox.Session) -> None:
    """Aggregate and pure-function tests; no adapters involved."""
    _install(session)
    session.run("pytest", "-m", "domain", *session.posargs)


@nox.session(python=PYTHON_VERSIONS[-1])
def scenarios(session: nox.Session) -> None:
    """Gherkin scenarios for payments, escrow and delivery."""
    _install(session)
    session.run("pytest", "tests/marketplace/bdd/", *session.posargs)


@nox.session(python=PYTHON_VERSIONS[-1])
def api(session: nox.Session) -> None:
    """HTTP layer through FastAPI's TestClient."""
    _install(session)
    session.run("pytest", "-m", "integration", *session.posargs)
