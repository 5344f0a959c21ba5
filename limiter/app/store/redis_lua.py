"""Redis Lua scripts for the shared state store.

These scripts provide the atomic read-modify-write primitives the limiter
core needs, so that a check and its update can never interleave with
another instance's update of the same key.
"""

# Atomic increment that applies the TTL only when the key is created.
# PTTL returns -1 for a key without expiry, which after INCRBY means the key
# was just created (or was persisted without TTL, which we never do).
INCR_WITH_EXPIRY_SCRIPT = """
    local key = KEYS[1]
    local delta = tonumber(ARGV[1])
    local ttl = tonumber(ARGV[2])

    local value = redis.call('INCRBY', key, delta)
    if redis.call('PTTL', key) < 0 then
        redis.call('EXPIRE', key, ttl)
    end
    return value
"""

# Increment only when the result stays within ARGV[2]; a rejected increment
# leaves the key untouched.
# Returns {1, new_value} when applied, {0, current_value} when rejected.
INCR_WITHIN_LIMIT_SCRIPT = """
    local key = KEYS[1]
    local delta = tonumber(ARGV[1])
    local limit = tonumber(ARGV[2])
    local ttl = tonumber(ARGV[3])

    local current = tonumber(redis.call('GET', key) or '0')
    if current + delta > limit then
        return {0, current}
    end

    local value = redis.call('INCRBY', key, delta)
    if redis.call('PTTL', key) < 0 then
        redis.call('EXPIRE', key, ttl)
    end
    return {1, value}
"""

# Compare-and-swap with expiry.
# ARGV[1]: '1' if an expected value is supplied, '0' if the key must be absent
# ARGV[2]: expected value (ignored when ARGV[1] is '0')
# ARGV[3]: new value
# ARGV[4]: ttl in seconds
# Returns 1 on success, 0 when another writer won, -1 when the expected key
# has expired in the meantime.
COMPARE_AND_SWAP_SCRIPT = """
    local key = KEYS[1]
    local has_expected = ARGV[1] == '1'
    local expected = ARGV[2]
    local new_value = ARGV[3]
    local ttl = tonumber(ARGV[4])

    local current = redis.call('GET', key)
    if has_expected then
        if not current then
            return -1
        end
        if current ~= expected then
            return 0
        end
    elseif current then
        return 0
    end

    redis.call('SET', key, new_value, 'EX', ttl)
    return 1
"""
