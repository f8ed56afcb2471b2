# -*- coding: utf-8 -*-
"""
同步引擎测试
"""

import pytest

from gatesync.reconcile.differ import ChangeSet, ObjectKey, diff
from gatesync.reconcile.state_store import LocalStateStore
from gatesync.reconcile.sync_engine import (
    ItemState,
    Operation,
    SyncEngine,
    SyncItem,
    build_items,
)
from gatesync.translation.models import ObjectKind, OwnerRef, PluginConfig, Route, Upstream

OWNER = OwnerRef(kind="ApisixRoute", namespace="default", name="web")
OTHER = OwnerRef(kind="ApisixRoute", namespace="default", name="other")


def desired_objects(owner=OWNER, prefix=""):
    return [
        Route(id=f"{prefix}r1", owner=owner, uris=["/api"], upstream_id=f"{prefix}u1",
              plugin_config_id=f"{prefix}p1"),
        Upstream(id=f"{prefix}u1", owner=owner, discovery_type="kubernetes",
                 service_name="default/api:80"),
        PluginConfig(id=f"{prefix}p1", owner=owner, plugins={"cors": {}}),
    ]


class TestSyncEngine:
    """SyncEngine"""

    @pytest.fixture(autouse=True)
    def setup_engine(self, admin_client, fake_gateway, fast_config):
        self.gateway = fake_gateway
        self.store = LocalStateStore()
        self.engine = SyncEngine(admin_client, self.store, fast_config)

    async def apply_desired(self, desired, owners=(OWNER,), **kwargs):
        change_set = diff(desired, self.store.view(owners), owners)
        return await self.engine.apply(change_set, **kwargs)

    async def test_creates_in_dependency_order(self):
        report = await self.apply_desired(desired_objects())

        assert report.succeeded
        assert [(m, c) for m, c, _ in self.gateway.requests] == [
            ("PUT", "upstreams"),
            ("PUT", "plugin_configs"),
            ("PUT", "routes"),
        ]
        assert self.gateway.objects[("routes", "r1")]["labels"]["owner-name"] == "web"
        assert self.store.get("r1").version is not None
        assert self.store.get("r1").content_hash == desired_objects()[0].content_hash

    async def test_second_apply_is_noop(self):
        await self.apply_desired(desired_objects())
        requests = len(self.gateway.requests)

        change_set = diff(desired_objects(), self.store.view([OWNER]), [OWNER])

        assert change_set.is_empty
        report = await self.engine.apply(change_set)
        assert report.items == []
        assert len(self.gateway.requests) == requests

    async def test_deletes_in_reverse_order(self):
        await self.apply_desired(desired_objects())
        self.gateway.requests.clear()

        report = await self.apply_desired([])

        assert report.succeeded
        assert [(m, c) for m, c, _ in self.gateway.requests] == [
            ("DELETE", "routes"),
            ("DELETE", "plugin_configs"),
            ("DELETE", "upstreams"),
        ]
        assert self.gateway.objects == {}
        assert len(self.store) == 0

    async def test_transient_failure_retried(self):
        self.gateway.fail("PUT", "u1", status=503, times=1)

        report = await self.apply_desired(desired_objects())

        assert report.succeeded
        assert self.gateway.count("PUT", "u1") == 2
        upstream_item = next(item for item in report.items if item.id == "u1")
        assert upstream_item.attempts == 2

    async def test_retries_exhausted(self, fast_config):
        self.gateway.fail("PUT", "r1", status=503, times=10)

        report = await self.apply_desired(desired_objects())

        assert not report.succeeded
        assert [item.id for item in report.failed] == ["r1"]
        assert self.gateway.count("PUT", "r1") == fast_config.max_retries + 1
        assert "AdminAPIUnavailable" in report.first_error()
        # 已成功的对象仍然记录在本地状态中
        assert self.store.get("u1") is not None
        assert self.store.get("r1") is None

    async def test_rejected_request(self):
        self.gateway.fail("PUT", "p1", status=400, times=10)

        report = await self.apply_desired(desired_objects())

        failed = report.failed
        assert [item.id for item in failed] == ["p1"]
        assert "400" in failed[0].error

    async def test_failed_upsert_skips_deletes(self):
        """同一owner的创建/更新失败时，不删除旧对象"""
        await self.apply_desired(desired_objects())
        replacement = [Upstream(id="u2", owner=OWNER, service_name="default/v2:80")]
        self.gateway.fail("PUT", "u2", status=503, times=10)

        report = await self.apply_desired(replacement)

        assert [item.id for item in report.failed] == ["u2"]
        assert {item.id for item in report.pending} == {"r1", "p1", "u1"}
        assert self.gateway.count("DELETE") == 0
        assert self.store.ids_for_owner(OWNER) == {"r1", "p1", "u1"}

    async def test_delete_missing_object_succeeds(self):
        await self.apply_desired(desired_objects())
        del self.gateway.objects[("routes", "r1")]

        report = await self.apply_desired([])

        assert report.succeeded
        assert self.store.get("r1") is None

    async def test_abort_leaves_remaining_pending(self):
        calls = []

        def should_abort(owner):
            calls.append(owner)
            return len(calls) > 1

        report = await self.apply_desired(desired_objects(), should_abort=should_abort)

        assert report.aborted
        assert not report.succeeded
        assert [item.id for item in report.applied] == ["u1"]
        assert len(report.pending) == 2
        assert self.gateway.count("PUT") == 1

    async def test_owners_independent(self):
        self.gateway.fail("PUT", "b_u1", status=400, times=10)

        report = await self.apply_desired(
            desired_objects() + desired_objects(owner=OTHER, prefix="b_"),
            owners=(OWNER, OTHER),
        )

        assert report.for_owner(OWNER).succeeded
        other_report = report.for_owner(OTHER)
        assert not other_report.succeeded
        assert [item.id for item in other_report.failed] == ["b_u1"]
        # 同一owner的后续对象仍会尝试
        assert ("PUT", "routes", "b_r1") in self.gateway.requests


class TestSyncItem:
    """变更项状态机"""

    def test_legal_transitions(self):
        item = SyncItem(Operation.CREATE, ObjectKind.ROUTE, "r1", OWNER)
        item.transition(ItemState.APPLYING)
        item.transition(ItemState.APPLIED)
        assert item.state == ItemState.APPLIED

    @pytest.mark.parametrize(
        "path",
        [
            [ItemState.APPLIED],
            [ItemState.APPLYING, ItemState.PENDING],
            [ItemState.APPLYING, ItemState.FAILED, ItemState.APPLYING],
        ],
    )
    def test_illegal_transitions(self, path):
        item = SyncItem(Operation.DELETE, ObjectKind.ROUTE, "r1", OWNER)
        with pytest.raises(ValueError):
            for state in path:
                item.transition(state)

    def test_build_items_order(self):
        route, upstream, plugin_config = desired_objects()
        change_set = ChangeSet(
            creates=[route, plugin_config],
            updates=[("u1", upstream)],
            deletes=[ObjectKey(ObjectKind.SSL, "s1", OWNER)],
        )

        items = build_items(change_set)

        assert [(item.operation, item.id) for item in items] == [
            (Operation.UPDATE, "u1"),
            (Operation.CREATE, "p1"),
            (Operation.CREATE, "r1"),
            (Operation.DELETE, "s1"),
        ]
        assert all(item.state == ItemState.PENDING for item in items)
