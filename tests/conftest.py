"""Pytest configuration and shared fixtures."""

import fnmatch

import pytest

# GitHub per-file patches (no file headers) for testing
SAMPLE_VULNERABLE_PATCH = """\
@@ -1,4 +1,7 @@
 import db

 def authenticate(username, password):
     return db.verify_user(username, password)
+
+def get_user(username):
+    return db.execute(f"SELECT * FROM users WHERE name = '{username}'")
"""

SAMPLE_PERFORMANCE_PATCH = """\
@@ -5,3 +5,8 @@ def process_items(items):
 def process_items(items):
     return [transform(item) for item in items]

+def find_duplicates(items):
+    duplicates = []
+    for i in range(len(items)):
+        for j in range(len(items)):
+            pass
"""

SAMPLE_MODIFIED_PATCH = """\
@@ -1,3 +1,3 @@
 def average(values):
-    return sum(values)
+    return sum(values) / len(values)

"""


class FakeRedis:
    """In-memory stand-in for ``redis.asyncio.Redis`` (decode_responses=True).

    Implements only the commands the worker uses; blocking commands return
    immediately.
    """

    def __init__(self) -> None:
        self.strings: dict[str, str] = {}
        self.hashes: dict[str, dict[str, str]] = {}
        self.lists: dict[str, list[str]] = {}
        self.zsets: dict[str, dict[str, float]] = {}
        self.expirations: dict[str, int] = {}
        self.published: list[tuple[str, str]] = []
        self.closed = False

    # Strings
    async def get(self, key):
        return self.strings.get(key)

    async def set(self, key, value, ex=None, nx=False):
        if nx and key in self.strings:
            return None
        self.strings[key] = str(value)
        if ex is not None:
            self.expirations[key] = ex
        return True

    async def keys(self, pattern="*"):
        return [key for key in self.strings if fnmatch.fnmatchcase(key, pattern)]

    # Hashes
    async def hsetnx(self, name, key, value):
        fields = self.hashes.setdefault(name, {})
        if key in fields:
            return 0
        fields[key] = str(value)
        return 1

    async def hset(self, name, key, value):
        fields = self.hashes.setdefault(name, {})
        added = 0 if key in fields else 1
        fields[key] = str(value)
        return added

    async def hget(self, name, key):
        return self.hashes.get(name, {}).get(key)

    async def hdel(self, name, *keys):
        fields = self.hashes.get(name, {})
        return sum(1 for key in keys if fields.pop(key, None) is not None)

    # Lists (index 0 is the left end)
    async def lpush(self, name, *values):
        items = self.lists.setdefault(name, [])
        for value in values:
            items.insert(0, str(value))
        return len(items)

    async def rpush(self, name, *values):
        items = self.lists.setdefault(name, [])
        items.extend(str(value) for value in values)
        return len(items)

    async def lrange(self, name, start, end):
        items = self.lists.get(name, [])
        end = len(items) if end == -1 else end + 1
        return list(items[start:end])

    async def llen(self, name):
        return len(self.lists.get(name, []))

    async def lrem(self, name, count, value):
        items = self.lists.get(name, [])
        removed = 0
        kept = []
        for item in items:
            if item == value and (count == 0 or removed < abs(count)):
                removed += 1
                continue
            kept.append(item)
        self.lists[name] = kept
        return removed

    async def blmove(self, first_list, second_list, timeout, src="LEFT", dest="RIGHT"):
        source = self.lists.get(first_list, [])
        if not source:
            return None
        value = source.pop(-1 if src == "RIGHT" else 0)
        target = self.lists.setdefault(second_list, [])
        if dest == "LEFT":
            target.insert(0, value)
        else:
            target.append(value)
        return value

    # Sorted sets
    async def zadd(self, name, mapping):
        members = self.zsets.setdefault(name, {})
        added = sum(1 for member in mapping if member not in members)
        members.update({member: float(score) for member, score in mapping.items()})
        return added

    async def zrem(self, name, *values):
        members = self.zsets.get(name, {})
        return sum(1 for value in values if members.pop(value, None) is not None)

    async def zscore(self, name, value):
        return self.zsets.get(name, {}).get(value)

    async def zcard(self, name):
        return len(self.zsets.get(name, {}))

    def _sorted(self, name):
        return sorted(self.zsets.get(name, {}).items(), key=lambda item: (item[1], item[0]))

    async def zrange(self, name, start, end):
        members = [member for member, _ in self._sorted(name)]
        end = len(members) if end == -1 else end + 1
        return members[start:end]

    async def zrangebyscore(self, name, min, max):
        low = float(min)
        high = float(max)
        return [member for member, score in self._sorted(name) if low <= score <= high]

    # Scripts: only the sliding-window rate limit script is used
    async def eval(self, script, numkeys, key, now, window_start, max_requests, window_seconds, member):
        members = self.zsets.setdefault(key, {})
        for existing, score in list(members.items()):
            if score <= float(window_start):
                del members[existing]
        if len(members) >= int(max_requests):
            return [0, 0, str(min(members.values()))]
        members[member] = float(now)
        return [1, int(max_requests) - len(members), str(now)]

    # Pub/sub
    async def publish(self, channel, message):
        self.published.append((channel, message))
        return 0

    async def aclose(self):
        self.closed = True


@pytest.fixture
def fake_redis() -> FakeRedis:
    """Empty in-memory Redis."""
    return FakeRedis()


@pytest.fixture
def sample_vulnerable_patch() -> str:
    """A patch adding an SQL injection."""
    return SAMPLE_VULNERABLE_PATCH


@pytest.fixture
def sample_performance_patch() -> str:
    """A patch adding an O(n²) loop."""
    return SAMPLE_PERFORMANCE_PATCH


@pytest.fixture
def sample_diffs():
    """Two changed files as returned by the GitHub client."""
    from review_worker.models.diff import FileDiff, FileStatus

    return [
        FileDiff(filename="auth/login.py", patch=SAMPLE_VULNERABLE_PATCH, status=FileStatus.MODIFIED),
        FileDiff(filename="utils/processor.py", patch=SAMPLE_PERFORMANCE_PATCH, status=FileStatus.ADDED),
    ]


def make_comment(**overrides):
    """A ReviewComment with sensible defaults."""
    from review_worker.models.findings import ReviewComment, Severity

    values = {
        "filename": "auth/login.py",
        "snippet": "def get_user(username):",
        "body": "SQL injection via string formatting.",
        "severity": Severity.CRITICAL,
        "confidence": 0.9,
    }
    values.update(overrides)
    return ReviewComment(**values)


@pytest.fixture
def sample_modified_patch() -> str:
    """A patch replacing one line."""
    return SAMPLE_MODIFIED_PATCH


@pytest.fixture(name="make_comment")
def make_comment_fixture():
    """Factory for review comments."""
    return make_comment
