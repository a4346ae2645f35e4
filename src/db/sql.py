"""Static SQL statements for the shared CourtListener rate-limit window."""

CREATE_RATE_LIMIT_TABLE = (
    """
    create table if not exists public.courtlistener_rate_limit (
        key text primary key,
        window_start timestamptz not null,
        request_count integer not null default 0,
        updated_at timestamptz not null default now()
    );
    """
).strip()

# Rolls the window and increments in one statement so concurrent callers
# never observe a half-reset row.
INCREMENT_RATE_LIMIT = (
    """
    insert into public.courtlistener_rate_limit as rl (
        key,
        window_start,
        request_count,
        updated_at
    )
    values (
        %(key)s,
        %(now)s,
        1,
        now()
    )
    on conflict (key) do update
    set
        window_start = case
            when rl.window_start + %(window)s <= %(now)s then %(now)s
            else rl.window_start
        end,
        request_count = case
            when rl.window_start + %(window)s <= %(now)s then 1
            else rl.request_count + 1
        end,
        updated_at = now()
    returning window_start, request_count;
    """
).strip()

SELECT_RATE_LIMIT = (
    """
    select window_start, request_count
    from public.courtlistener_rate_limit
    where key = %(key)s;
    """
).strip()

RESET_RATE_LIMIT = (
    """
    insert into public.courtlistener_rate_limit (key, window_start, request_count, updated_at)
    values (%(key)s, %(now)s, 0, now())
    on conflict (key) do update
    set
        window_start = excluded.window_start,
        request_count = 0,
        updated_at = now();
    """
).strip()
