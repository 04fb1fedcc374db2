from __future__ import annotations

import logging

import asyncpg

LOGGER = logging.getLogger('tokenforge.store')

INSERT_DEPLOYMENT_SQL = '''
INSERT INTO token_deployments (
  user_address,
  token_name,
  token_symbol,
  network,
  chain_id,
  contract_address,
  transaction_hash,
  gas_used,
  deployment_cost,
  status,
  error_kind,
  error_message,
  created_at
)
VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, NOW())
RETURNING id
'''


class DeploymentStore:
    """Writes flattened deployment results; the deployment outcome never depends on it."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self.pool = pool

    @classmethod
    async def connect(cls, dsn: str) -> 'DeploymentStore':
        pool = await asyncpg.create_pool(dsn=dsn, min_size=1, max_size=5)
        return cls(pool)

    async def save(self, record: dict) -> int:
        async with self.pool.acquire() as conn:
            row_id = await conn.fetchval(
                INSERT_DEPLOYMENT_SQL,
                record['user_address'],
                record['token_name'],
                record['token_symbol'],
                record['network'],
                record['chain_id'],
                record['contract_address'],
                record['transaction_hash'],
                record['gas_used'],
                record['deployment_cost'],
                record['status'],
                record['error_kind'],
                record['error_message']
            )
        LOGGER.info(
            'deployment recorded id=%s chain_id=%s status=%s tx_hash=%s',
            row_id,
            record['chain_id'],
            record['status'],
            record['transaction_hash']
        )
        return int(row_id)

    async def list_for_user(self, user_address: str, limit: int = 100) -> list[dict]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                '''
                SELECT
                  id,
                  user_address,
                  token_name,
                  token_symbol,
                  network,
                  chain_id,
                  contract_address,
                  transaction_hash,
                  gas_used,
                  deployment_cost,
                  status,
                  error_kind,
                  created_at
                FROM token_deployments
                WHERE lower(user_address) = lower($1)
                ORDER BY created_at DESC
                LIMIT $2
                ''',
                user_address,
                limit
            )
        return [dict(r) for r in rows]

    async def close(self) -> None:
        await self.pool.close()
