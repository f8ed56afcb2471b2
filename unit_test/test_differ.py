# -*- coding: utf-8 -*-
"""
差异计算测试
"""

import pytest

from gatesync.reconcile.differ import diff
from gatesync.reconcile.state_store import StoredObject
from gatesync.translation.models import ObjectKind, OwnerRef, PluginConfig, Route, Upstream

OWNER = OwnerRef(kind="ApisixRoute", namespace="default", name="web")
OTHER = OwnerRef(kind="ApisixRoute", namespace="default", name="other")


def stored(obj, content_hash=None):
    return StoredObject(
        kind=obj.kind,
        id=obj.id,
        owner=obj.owner,
        content_hash=obj.content_hash if content_hash is None else content_hash,
    )


class TestDiff:
    """diff"""

    def setup_method(self):
        self.upstream = Upstream(id="u1", owner=OWNER, service_name="default/api:80")
        self.route = Route(id="r1", owner=OWNER, uris=["/api"], upstream_id="u1")
        self.plugin_config = PluginConfig(id="p1", owner=OWNER, plugins={"cors": {}})

    def test_everything_new(self):
        change_set = diff([self.route, self.upstream, self.plugin_config], {}, [OWNER])

        assert [obj.id for obj in change_set.creates] == ["u1", "p1", "r1"]
        assert change_set.updates == []
        assert change_set.deletes == []
        assert change_set.summary() == {"creates": 3, "updates": 0, "deletes": 0}

    def test_unchanged_is_empty(self):
        current = {obj.id: stored(obj) for obj in (self.route, self.upstream)}

        change_set = diff([self.route, self.upstream], current, [OWNER])

        assert change_set.is_empty

    def test_changed_content_is_update(self):
        current = {obj.id: stored(obj) for obj in (self.route, self.upstream)}
        changed = self.route.model_copy(update={"uris": ["/v2"]})

        change_set = diff([changed, self.upstream], current, [OWNER])

        assert change_set.creates == []
        assert [object_id for object_id, _ in change_set.updates] == ["r1"]
        assert change_set.updates[0][1].uris == ["/v2"]

    def test_rebuilt_entry_is_update(self):
        """从网关重建的记录指纹为空，会被更新一次"""
        current = {"u1": stored(self.upstream, content_hash="")}

        change_set = diff([self.upstream], current, [OWNER])

        assert [object_id for object_id, _ in change_set.updates] == ["u1"]

    def test_deletes_in_reverse_dependency_order(self):
        current = {
            obj.id: stored(obj) for obj in (self.route, self.upstream, self.plugin_config)
        }

        change_set = diff([], current, [OWNER])

        assert [(key.kind, key.id) for key in change_set.deletes] == [
            (ObjectKind.ROUTE, "r1"),
            (ObjectKind.PLUGIN_CONFIG, "p1"),
            (ObjectKind.UPSTREAM, "u1"),
        ]
        assert all(key.owner == OWNER for key in change_set.deletes)

    def test_other_owner_objects_untouched(self):
        foreign = Upstream(id="u9", owner=OTHER, service_name="default/x:80")
        current = {"u1": stored(self.upstream), "u9": stored(foreign)}

        change_set = diff([], current, [OWNER])

        assert [key.id for key in change_set.deletes] == ["u1"]

    def test_foreign_owner_in_desired(self):
        foreign = Upstream(id="u9", owner=OTHER)
        with pytest.raises(ValueError):
            diff([foreign], {}, [OWNER])

    def test_conflicting_duplicate_id(self):
        duplicate = self.upstream.model_copy(update={"service_name": "default/other:80"})
        with pytest.raises(ValueError):
            diff([self.upstream, duplicate], {}, [OWNER])

    def test_identical_duplicate_collapsed(self):
        change_set = diff([self.upstream, self.upstream.clone()], {}, [OWNER])
        assert len(change_set.creates) == 1

    def test_multiple_owners(self):
        foreign = Upstream(id="u9", owner=OTHER)
        change_set = diff([self.upstream, foreign], {}, [OWNER, OTHER])

        assert {obj.id for obj in change_set.creates} == {"u1", "u9"}
        assert change_set.owners == {OWNER, OTHER}
