from __future__ import annotations

import json
import logging
from contextlib import contextmanager
from typing import Iterator

import redis
from redis.exceptions import RedisError

from ..models import PendingExchange
from ..services.errors import StoreUnavailable
from .base import PENDING_BUCKET_KEY, PENDING_PREFIX, ExchangeStore, pending_key

logger = logging.getLogger(__name__)

# KEYS[1] pending bucket (zset scored by server timestamp)
# ARGV: prefix, session_id, payload json, now ms, ttl s, windows json, max window ms
# Mirrors services/proximity.py: match_confidence + select_counterpart.
STORE_AND_MATCH_LUA = """
local bucket = KEYS[1]
local prefix = ARGV[1]
local session_id = ARGV[2]
local payload = ARGV[3]
local now = tonumber(ARGV[4])
local ttl = tonumber(ARGV[5])
local windows = cjson.decode(ARGV[6])
local max_window = tonumber(ARGV[7])
local max_age = ttl * 1000

local function present(v)
  return type(v) == 'string' and string.find(v, '%S') ~= nil
end

local function same(x, y)
  if not present(x) and not present(y) then
    return true
  end
  return x == y
end

local function unknown(loc)
  return not (present(loc.city) or present(loc.state) or present(loc.network))
end

local function confidence(a, b)
  if a.is_vpn == true or b.is_vpn == true then
    return 'vpn'
  end
  if present(a.city) and present(b.city) and a.city == b.city and same(a.state, b.state) and same(a.country, b.country) then
    return 'city'
  end
  if present(a.state) and present(b.state) and a.state == b.state and same(a.country, b.country) then
    return 'state'
  end
  if present(a.network) and present(b.network) and a.network == b.network then
    return 'network'
  end
  if unknown(a) or unknown(b) then
    return 'unknown'
  end
  return nil
end

local me = cjson.decode(payload)
local my_location = me.location or {}
local my_key = prefix .. session_id

redis.call('ZREMRANGEBYSCORE', bucket, '-inf', string.format('(%d', now - max_age))

local candidates = redis.call('ZRANGEBYSCORE', bucket, string.format('%d', now - max_window), string.format('%d', now + max_window))
local best_id, best_ts, best_raw = nil, nil, nil
for _, cid in ipairs(candidates) do
  if cid ~= session_id then
    local raw = redis.call('GET', prefix .. cid)
    if not raw then
      redis.call('ZREM', bucket, cid)
    else
      local other = cjson.decode(raw)
      local ts = tonumber(other.server_timestamp)
      if ts and other.user_id ~= me.user_id and (now - ts) <= max_age then
        local conf = confidence(my_location, other.location or {})
        if conf then
          local window = tonumber(windows[conf]) or 0
          if math.abs(now - ts) <= window then
            if best_ts == nil or ts < best_ts or (ts == best_ts and cid < best_id) then
              best_id = cid
              best_ts = ts
              best_raw = raw
            end
          end
        end
      end
    end
  end
end

if best_id then
  redis.call('DEL', prefix .. best_id, my_key)
  redis.call('ZREM', bucket, best_id, session_id)
  return {best_id, best_raw}
end

redis.call('SET', my_key, payload, 'EX', ARGV[5])
redis.call('ZADD', bucket, ARGV[4], session_id)
redis.call('EXPIRE', bucket, ARGV[5])
return false
"""

COMPARE_AND_SET_LUA = """
local current = redis.call('GET', KEYS[1])
if current ~= ARGV[1] then
  return 0
end
redis.call('SET', KEYS[1], ARGV[2], 'EX', ARGV[3])
return 1
"""


class RedisExchangeStore(ExchangeStore):
    """Redis-backed store. Both atomic primitives run as server-side Lua scripts."""

    def __init__(self, url: str, socket_timeout: float = 2.0, client: redis.Redis | None = None) -> None:
        self._url = url
        self._socket_timeout = socket_timeout
        self._client = client
        self._store_and_match_script = None
        self._compare_and_set_script = None

    def connect(self) -> None:
        if self._client is None:
            self._client = redis.Redis.from_url(
                self._url,
                decode_responses=True,
                socket_timeout=self._socket_timeout,
                socket_connect_timeout=self._socket_timeout,
            )
        self._store_and_match_script = self._client.register_script(STORE_AND_MATCH_LUA)
        self._compare_and_set_script = self._client.register_script(COMPARE_AND_SET_LUA)
        logger.info("[store] redis exchange store connected")

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None
            self._store_and_match_script = None
            self._compare_and_set_script = None
            logger.info("[store] redis exchange store closed")

    @property
    def client(self) -> redis.Redis:
        if self._client is None:
            raise StoreUnavailable("Exchange store is not connected")
        return self._client

    @contextmanager
    def _guard(self, operation: str) -> Iterator[None]:
        try:
            yield
        except RedisError as exc:
            logger.error("[store] redis %s failed: %s", operation, exc)
            raise StoreUnavailable("Exchange store unavailable") from exc

    def ping(self) -> bool:
        with self._guard("ping"):
            return bool(self.client.ping())

    def now_ms(self) -> int:
        with self._guard("time"):
            seconds, micros = self.client.time()
        return int(seconds) * 1000 + int(micros) // 1000

    def get(self, key: str) -> str | None:
        with self._guard("get"):
            return self.client.get(key)

    def get_many(self, keys: list[str]) -> list[str | None]:
        if not keys:
            return []
        with self._guard("mget"):
            return list(self.client.mget(keys))

    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        with self._guard("set"):
            self.client.set(key, value, ex=ttl_seconds)

    def expire(self, key: str, ttl_seconds: int) -> bool:
        with self._guard("expire"):
            return bool(self.client.expire(key, ttl_seconds))

    def incr(self, key: str, ttl_seconds: int) -> int:
        with self._guard("incr"):
            pipe = self.client.pipeline(transaction=True)
            pipe.set(key, 0, ex=ttl_seconds, nx=True)
            pipe.incr(key)
            _, count = pipe.execute()
        return int(count)

    def compare_and_set(self, key: str, expected: str, value: str, ttl_seconds: int) -> bool:
        if self._compare_and_set_script is None:
            raise StoreUnavailable("Exchange store is not connected")
        with self._guard("compare_and_set"):
            result = self._compare_and_set_script(keys=[key], args=[expected, value, ttl_seconds])
        return int(result or 0) == 1

    def pending_sessions(self) -> list[str]:
        with self._guard("zrange"):
            return list(self.client.zrange(PENDING_BUCKET_KEY, 0, -1))

    def remove_pending(self, session_ids: list[str]) -> None:
        if not session_ids:
            return
        with self._guard("remove_pending"):
            pipe = self.client.pipeline(transaction=True)
            for session_id in session_ids:
                pipe.delete(pending_key(session_id))
                pipe.zrem(PENDING_BUCKET_KEY, session_id)
            pipe.execute()

    def store_and_match(
        self,
        exchange: PendingExchange,
        ttl_seconds: int,
        windows: dict[str, int],
    ) -> PendingExchange | None:
        if self._store_and_match_script is None:
            raise StoreUnavailable("Exchange store is not connected")
        with self._guard("store_and_match"):
            result = self._store_and_match_script(
                keys=[PENDING_BUCKET_KEY],
                args=[
                    PENDING_PREFIX,
                    exchange.session_id,
                    json.dumps(exchange.to_dict()),
                    exchange.server_timestamp,
                    ttl_seconds,
                    json.dumps(windows),
                    max(windows.values()),
                ],
            )
        if not result:
            return None
        _, raw = result
        return PendingExchange.from_dict(json.loads(raw))
