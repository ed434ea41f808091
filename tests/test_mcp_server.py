import asyncio
import sys
import types

import pytest

from branchcore.core.exceptions import DependencyMissingError
from branchcore.core.session import ThoughtSession
from branchcore.mcp import server as mcp_server


class FakeFastMCP:
    def __init__(self, name: str):
        self.name = name
        self.tools = {}
        self.run_calls = []

    def tool(self, name=None, description=None):
        def decorator(fn):
            self.tools[name or fn.__name__] = fn
            return fn

        return decorator

    def run(self, **kwargs):
        self.run_calls.append(kwargs)


class FakeSession:
    def __init__(self):
        self.closed = False

    async def close(self):
        self.closed = True


def _install_fake_mcp_modules(monkeypatch):
    mcp_mod = types.ModuleType("mcp")
    server_mod = types.ModuleType("mcp.server")
    fastmcp_mod = types.ModuleType("mcp.server.fastmcp")
    fastmcp_mod.FastMCP = FakeFastMCP

    monkeypatch.setitem(sys.modules, "mcp", mcp_mod)
    monkeypatch.setitem(sys.modules, "mcp.server", server_mod)
    monkeypatch.setitem(sys.modules, "mcp.server.fastmcp", fastmcp_mod)


def test_build_server_registers_branch_thinking(monkeypatch, config, session):
    _install_fake_mcp_modules(monkeypatch)

    server, returned = mcp_server.build_server(config, session)

    assert returned is session
    assert list(server.tools) == ["branch_thinking"]


@pytest.mark.asyncio
async def test_tool_accepts_camel_case_arguments(monkeypatch, config, session):
    _install_fake_mcp_modules(monkeypatch)
    server, _ = mcp_server.build_server(config, session)
    tool = server.tools["branch_thinking"]

    added = await tool(content="TODO: wire the server", branchId="srv", keyPoints=["wiring"])
    assert added["ok"] is True
    assert added["data"]["branch_id"] == "srv"

    listed = await tool(command={"type": "list"})
    assert [b["id"] for b in listed["data"]] == ["srv"]


@pytest.mark.asyncio
async def test_tool_reports_validation_errors(monkeypatch, config, session):
    _install_fake_mcp_modules(monkeypatch)
    server, _ = mcp_server.build_server(config, session)

    result = await server.tools["branch_thinking"]()

    assert result["ok"] is False
    assert result["code"] == "VALIDATION_ERROR"


def test_missing_mcp_dependency(monkeypatch, config, session):
    monkeypatch.setitem(sys.modules, "mcp", None)
    monkeypatch.setitem(sys.modules, "mcp.server", None)
    monkeypatch.setitem(sys.modules, "mcp.server.fastmcp", None)

    with pytest.raises(DependencyMissingError):
        mcp_server.build_server(config, session)


def test_main_runs_with_stdio_transport_and_closes_session(monkeypatch, config):
    fake_server = FakeFastMCP("x")
    fake_session = FakeSession()

    monkeypatch.setattr(mcp_server, "get_config", lambda: config)
    monkeypatch.setattr(mcp_server, "configure_logging", lambda *args, **kwargs: None)
    monkeypatch.setattr(mcp_server, "build_server", lambda cfg: (fake_server, fake_session))

    mcp_server.main()

    assert fake_server.run_calls == [{"transport": "stdio"}]
    assert fake_session.closed is True


def test_main_closes_session_after_server_loop_is_gone(monkeypatch, config, gateway, memory_store):
    session = ThoughtSession(config=config, gateway=gateway, store=memory_store)

    class LoopOwningServer(FakeFastMCP):
        def run(self, **kwargs):
            # a prefetch still pending when the server's own loop shuts down
            loop = asyncio.new_event_loop()
            session._background.add(loop.create_task(asyncio.sleep(3600)))
            loop.run_until_complete(asyncio.sleep(0))
            loop.close()
            super().run(**kwargs)

    server = LoopOwningServer("x")
    monkeypatch.setattr(mcp_server, "get_config", lambda: config)
    monkeypatch.setattr(mcp_server, "configure_logging", lambda *args, **kwargs: None)
    monkeypatch.setattr(mcp_server, "build_server", lambda cfg: (server, session))

    mcp_server.main()

    assert server.run_calls == [{"transport": "stdio"}]
    assert session._background == set()
