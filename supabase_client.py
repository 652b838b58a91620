"""Supabase REST (PostgREST) and auth integration"""
import httpx
from config import SUPABASE_URL, SUPABASE_SERVICE_ROLE_KEY, SUPABASE_TIMEOUT

UNIQUE_VIOLATION = "23505"

FILTER_OPS = ("eq", "neq", "gt", "gte", "lt", "lte", "like", "in")


class SupabaseError(Exception):
    def __init__(self, status, code="", message=""):
        super().__init__(f"Supabase API error ({status}) {code}: {message}")
        self.status = status
        self.code = code
        self.message = message

    @property
    def is_unique_violation(self):
        return self.code == UNIQUE_VIOLATION


def encode_filters(filters):
    """(column, op, value) -> PostgREST query params"""
    params = []
    for column, op, value in filters or []:
        if op not in FILTER_OPS:
            raise ValueError(f"Unsupported filter op: {op}")
        if op == "in":
            value = "(" + ",".join(str(v) for v in value) + ")"
        elif op == "like":
            # PostgREST accepts * as the wildcard in URLs
            value = str(value).replace("%", "*")
        elif isinstance(value, bool):
            value = "true" if value else "false"
        params.append((column, f"{op}.{value}"))
    return params


class SupabaseClient:
    def __init__(self, url=SUPABASE_URL, service_key=SUPABASE_SERVICE_ROLE_KEY, transport=None):
        self.rest_url = f"{url}/rest/v1"
        self.auth_url = f"{url}/auth/v1"
        self.headers = {
            "apikey": service_key,
            "Authorization": f"Bearer {service_key}",
            "Content-Type": "application/json",
        }
        self._transport = transport

    def _client(self):
        return httpx.AsyncClient(timeout=SUPABASE_TIMEOUT, transport=self._transport)

    @staticmethod
    def _raise_for(resp):
        if resp.status_code < 400:
            return
        try:
            body = resp.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}
        raise SupabaseError(
            resp.status_code,
            str(body.get("code") or ""),
            body.get("message") or body.get("msg") or resp.text[:200],
        )

    # === Tables ===

    async def select(self, table, filters=None, columns="*", order=None, limit=None):
        params = [("select", columns)] + encode_filters(filters)
        if order:
            column, _, direction = order.partition(".")
            params.append(("order", f"{column}.{direction or 'asc'}"))
        if limit:
            params.append(("limit", str(limit)))

        async with self._client() as client:
            resp = await client.get(f"{self.rest_url}/{table}", headers=self.headers, params=params)
        self._raise_for(resp)
        return resp.json()

    async def select_one(self, table, filters=None, columns="*"):
        rows = await self.select(table, filters, columns=columns, limit=1)
        return rows[0] if rows else None

    async def insert(self, table, row):
        headers = {**self.headers, "Prefer": "return=representation"}
        async with self._client() as client:
            resp = await client.post(f"{self.rest_url}/{table}", headers=headers, json=[row])
        self._raise_for(resp)
        created = resp.json()
        return created[0] if created else row

    async def update(self, table, filters, values):
        if not filters:
            raise ValueError("update without filters")
        headers = {**self.headers, "Prefer": "return=representation"}
        async with self._client() as client:
            resp = await client.patch(
                f"{self.rest_url}/{table}",
                headers=headers,
                params=encode_filters(filters),
                json=values,
            )
        self._raise_for(resp)
        return resp.json()

    async def delete(self, table, filters):
        if not filters:
            raise ValueError("delete without filters")
        async with self._client() as client:
            resp = await client.delete(
                f"{self.rest_url}/{table}",
                headers=self.headers,
                params=encode_filters(filters),
            )
        self._raise_for(resp)

    # === Auth ===

    async def get_user(self, access_token):
        """Resolve an access token to its auth user, None when invalid"""
        if not access_token:
            return None
        headers = {"apikey": self.headers["apikey"], "Authorization": f"Bearer {access_token}"}
        async with self._client() as client:
            resp = await client.get(f"{self.auth_url}/user", headers=headers)
        if resp.status_code in (401, 403):
            return None
        self._raise_for(resp)
        return resp.json()
