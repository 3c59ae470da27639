"""Tests for subscriptions and the mount/unmount lifecycle."""

from atomx import atom, create_store


class TestSubscribe:
    def test_listener_fires_on_change(self):
        count = atom(0)
        store = create_store()
        log = []
        store.sub(count, lambda: log.append(store.get(count)))
        store.set(count, 1)
        store.set(count, 2)
        assert log == [1, 2]

    def test_no_fire_on_same_value(self):
        count = atom("a")
        store = create_store()
        log = []
        store.sub(count, lambda: log.append(1))
        store.set(count, "a")
        assert log == []

    def test_unsubscribe_stops_and_is_idempotent(self):
        count = atom(0)
        store = create_store()
        log = []
        unsub = store.sub(count, lambda: log.append(1))
        store.set(count, 1)
        unsub()
        unsub()
        store.set(count, 2)
        assert log == [1]

    def test_derived_listener_only_on_value_change(self):
        n = atom(1)
        parity = atom(lambda get: get(n) % 2)
        store = create_store()
        log = []
        store.sub(parity, lambda: log.append(store.get(parity)))
        store.set(n, 3)
        assert log == []
        store.set(n, 4)
        assert log == [0]

    def test_mounted_derived_recomputes_once_per_change(self):
        count = atom(0)
        calls = []

        def read(get):
            calls.append(1)
            return get(count) * 2

        double = atom(read)
        store = create_store()
        store.sub(double, lambda: None)
        assert len(calls) == 1
        store.set(count, 5)
        assert store.get(double) == 10
        assert store.get(double) == 10
        assert len(calls) == 2


class TestDiamond:
    def test_recomputes_once_and_notifies_once(self):
        a = atom(1)
        b1 = atom(lambda get: get(a) + 1)
        b2 = atom(lambda get: get(a) * 10)
        calls = []

        def read_c(get):
            calls.append((get(b1), get(b2)))
            return get(b1) + get(b2)

        c = atom(read_c)
        store = create_store()
        log = []
        store.sub(c, lambda: log.append(store.get(c)))
        assert calls == [(2, 10)]
        store.set(a, 2)
        assert calls == [(2, 10), (3, 20)]
        assert log == [23]

    def test_deep_diamond_chain(self):
        root = atom(0)
        layer = [root]
        for _ in range(8):
            left = atom(lambda get, p=layer[-1]: get(p) + 1)
            right = atom(lambda get, p=layer[-1]: get(p) + 1)
            layer.append(atom(lambda get, l=left, r=right: max(get(l), get(r))))
        top = layer[-1]
        store = create_store()
        log = []
        store.sub(top, lambda: log.append(store.get(top)))
        store.set(root, 100)
        assert log == [108]


class TestMountLifecycle:
    def test_dependencies_mounted_with_dependent(self):
        a = atom(1)
        b = atom(lambda get: get(a) + 1)
        store = create_store()
        assert not store.is_mounted(a)
        unsub = store.sub(b, lambda: None)
        assert store.is_mounted(a)
        assert store.is_mounted(b)
        assert b in store._mounted[a].dependents
        assert a in store._mounted[b].dependencies
        unsub()
        assert not store.is_mounted(a)
        assert not store.is_mounted(b)

    def test_shared_dependency_stays_mounted(self):
        a = atom(1)
        b = atom(lambda get: get(a) + 1)
        c = atom(lambda get: get(a) + 2)
        store = create_store()
        unsub_b = store.sub(b, lambda: None)
        unsub_c = store.sub(c, lambda: None)
        unsub_b()
        assert store.is_mounted(a)
        assert not store.is_mounted(b)
        unsub_c()
        assert not store.is_mounted(a)

    def test_listened_dependency_stays_mounted(self):
        a = atom(1)
        b = atom(lambda get: get(a) + 1)
        store = create_store()
        unsub_a = store.sub(a, lambda: None)
        unsub_b = store.sub(b, lambda: None)
        unsub_b()
        assert store.is_mounted(a)
        unsub_a()
        assert not store.is_mounted(a)

    def test_unmounted_atom_not_recomputed(self):
        a = atom(1)
        other = atom(0)
        calls = []

        def read(get):
            calls.append(1)
            return get(a)

        b = atom(read)
        store = create_store()
        store.sub(b, lambda: None)()
        store.set(a, 2)
        store.set(other, 1)
        assert len(calls) == 1
        assert store.get(b) == 2
        assert len(calls) == 2

    def test_switched_dependency_unmounted(self):
        flag = atom(True)
        a = atom("a")
        b = atom("b")
        c = atom(lambda get: get(a) if get(flag) else get(b))
        store = create_store()
        store.sub(c, lambda: None)
        assert store.is_mounted(a)
        assert not store.is_mounted(b)
        store.set(flag, False)
        assert not store.is_mounted(a)
        assert store.is_mounted(b)
        assert store.get(c) == "b"

    def test_sub_twice_mounts_once(self):
        mounts = []
        a = atom(0)
        a.on_mount = lambda set_self: mounts.append(1)
        store = create_store()
        store.sub(a, lambda: None)
        store.sub(a, lambda: None)
        assert mounts == [1]


class TestOnMount:
    def test_on_mount_and_unmount(self):
        events = []
        a = atom(0)

        def on_mount(set_self):
            events.append("mount")
            return lambda: events.append("unmount")

        a.on_mount = on_mount
        store = create_store()
        unsub = store.sub(a, lambda: None)
        assert events == ["mount"]
        unsub()
        assert events == ["mount", "unmount"]

    def test_on_mount_of_dependency(self):
        events = []
        a = atom(0)
        a.on_mount = lambda set_self: events.append("a")
        b = atom(lambda get: get(a))
        store = create_store()
        store.sub(b, lambda: None)
        assert events == ["a"]

    def test_on_mount_setter_notifies(self):
        a = atom(0)
        a.on_mount = lambda set_self: set_self(5)
        double = atom(lambda get: get(a) * 2)
        store = create_store()
        log = []
        store.sub(double, lambda: log.append(store.get(double)))
        assert store.get(a) == 5
        assert log == [10]

    def test_on_mount_setter_after_flush(self):
        setters = []
        a = atom(0)
        a.on_mount = setters.append
        store = create_store()
        log = []
        store.sub(a, lambda: log.append(store.get(a)))
        setters[0](lambda prev: prev + 1)
        assert log == [1]

    def test_remount_runs_on_mount_again(self):
        events = []
        a = atom(0)
        a.on_mount = lambda set_self: events.append("mount")
        store = create_store()
        store.sub(a, lambda: None)()
        store.sub(a, lambda: None)
        assert events == ["mount", "mount"]
