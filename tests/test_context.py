import asyncio
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from rpcgate.accounts import AccountId32
from rpcgate.config import FirewallConfig, RpcConfig, ServiceConfig
from rpcgate.context import SecureRpcContext, create_context, default_data_dir
from rpcgate.firewall import Firewall, TemporaryAccessRecord


def _service_config(unrestricted=False):
    return ServiceConfig(
        rpc=RpcConfig(listen_addr=("127.0.0.1", 8545), proxy_to_url="http://127.0.0.1:9944"),
        firewall=FirewallConfig(allow_unrestricted_access=unrestricted),
    )


def test_default_data_dir_is_under_home():
    path = default_data_dir()
    assert path.parent == Path.home()
    assert path.name == ".secure-rpc-gateway"


def test_create_context_creates_nested_directory(tmp_path):
    target = tmp_path / "a" / "b"
    ctx = create_context(_service_config(), target)
    assert target.is_dir()
    assert ctx.data_dir == target


def test_create_context_accepts_existing_directory(tmp_path):
    ctx = create_context(_service_config(), tmp_path)
    assert ctx.data_dir == tmp_path
    assert tmp_path.is_dir()


def test_create_context_uses_default_dir(tmp_path, monkeypatch):
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.setenv("USERPROFILE", str(tmp_path))
    ctx = create_context(_service_config())
    assert ctx.data_dir == tmp_path / ".secure-rpc-gateway"
    assert ctx.data_dir.is_dir()


def test_context_exposes_config_and_no_admin(tmp_path):
    config = _service_config()
    ctx = create_context(config, tmp_path)
    assert ctx.config is config
    assert ctx.admin_pair is None


@pytest.mark.asyncio
async def test_firewall_follows_config(tmp_path):
    open_ctx = create_context(_service_config(unrestricted=True), tmp_path)
    closed_ctx = create_context(_service_config(unrestricted=False), tmp_path)
    assert await open_ctx.firewall.is_allowed("8.8.8.8") is True
    assert await closed_ctx.firewall.is_allowed("8.8.8.8") is False


def _clocked_context(tmp_path, now):
    firewall = Firewall(FirewallConfig(), clock=lambda: now[0])
    return SecureRpcContext(_service_config(), tmp_path, firewall)


@pytest.mark.asyncio
async def test_run_cleanup_drops_expired_records(tmp_path):
    now = [datetime(2024, 1, 1, tzinfo=timezone.utc)]
    ctx = _clocked_context(tmp_path, now)
    account = AccountId32(bytes(range(32)))
    record = TemporaryAccessRecord(now[0], now[0] + timedelta(minutes=5))
    await ctx.firewall.grant_temporary_access(account, record)

    now[0] += timedelta(minutes=10)
    task = asyncio.create_task(ctx.run_cleanup(0.01))
    await asyncio.sleep(0.05)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    now[0] -= timedelta(minutes=9)
    assert await ctx.firewall.is_account_allowed(account) is False


@pytest.mark.asyncio
async def test_without_cleanup_record_survives(tmp_path):
    now = [datetime(2024, 1, 1, tzinfo=timezone.utc)]
    ctx = _clocked_context(tmp_path, now)
    account = AccountId32(bytes(range(32)))
    record = TemporaryAccessRecord(now[0], now[0] + timedelta(minutes=5))
    await ctx.firewall.grant_temporary_access(account, record)

    now[0] += timedelta(minutes=10)
    now[0] -= timedelta(minutes=9)
    assert await ctx.firewall.is_account_allowed(account) is True


@pytest.mark.asyncio
async def test_run_cleanup_rejects_non_positive_interval(tmp_path):
    ctx = create_context(_service_config(), tmp_path)
    with pytest.raises(ValueError):
        await ctx.run_cleanup(0)