"""Tests for the server entry point."""

import pytest

from keyholder_tracker import server


@pytest.mark.unit
class TestServerMain:
    """Test argument handling and startup order with uvicorn mocked out."""

    @pytest.fixture(autouse=True)
    def fake_uvicorn(self, monkeypatch):
        self.served = []
        monkeypatch.setattr(
            server.uvicorn, "run", lambda app, **kwargs: self.served.append((app, kwargs))
        )
        monkeypatch.setattr(server, "initialize_logging", lambda: None)

    def test_parse_args(self):
        args = server.parse_args(["--host", "0.0.0.0", "--port", "9100", "--skip-migrations"])

        assert args.host == "0.0.0.0"
        assert args.port == 9100
        assert args.skip_migrations is True

    def test_serves_after_migrations(self, monkeypatch):
        migrated = []

        def migrate():
            migrated.append(True)
            return True

        monkeypatch.setattr(server, "run_migrations", migrate)

        assert server.main(["--port", "9100"]) == 0

        assert migrated == [True]
        app, kwargs = self.served[0]
        assert app == "keyholder_tracker.main:app"
        assert kwargs["port"] == 9100

    def test_failed_migrations_stop_startup(self, monkeypatch):
        monkeypatch.setattr(server, "run_migrations", lambda: False)

        assert server.main([]) == 1
        assert self.served == []

    def test_skip_migrations(self, monkeypatch):
        def fail():
            raise AssertionError("migrations should not run")

        monkeypatch.setattr(server, "run_migrations", fail)

        assert server.main(["--skip-migrations"]) == 0
        assert len(self.served) == 1
