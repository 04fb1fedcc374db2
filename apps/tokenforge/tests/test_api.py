import unittest
from unittest.mock import AsyncMock, MagicMock, patch

from fastapi.testclient import TestClient

from apps.tokenforge import main
from apps.tokenforge.errors import ContractNotFound
from apps.tokenforge.models import DeploymentResult, DeploymentState, DeploymentStatus, FeeEstimate, TokenInfo

USER = '0x70997970C51812dc3A010C7d01b50e0d17dc79C8'
TOKEN = '0x5FbDB2315678afecb367f032d93F642f64180aa3'
TX_HASH = '0x' + 'ef' * 32

DEPLOY_BODY = {
    'user_address': USER,
    'config': {
        'name': 'Demo',
        'symbol': 'dem',
        'decimals': 18,
        'initial_supply': '1000000',
        'chain_id': 1,
        'features': {'burnable': True},
        'vesting': [{'category': 'team', 'percentage': '10', 'start_date': '2025-01-01', 'duration_months': 12, 'enabled': True}]
    }
}


def _deployed() -> DeploymentResult:
    return DeploymentResult(
        success=True,
        status=DeploymentStatus.DEPLOYED,
        chain_id=1,
        contract_address=TOKEN,
        transaction_hash=TX_HASH,
        gas_used=2_000_000,
        protocol_fee='0.01',
        native_cost_paid='0.012'
    )


def _orchestrator(result: DeploymentResult) -> MagicMock:
    orchestrator = MagicMock()
    orchestrator.deploy = AsyncMock(return_value=result)
    return orchestrator


class ApiTests(unittest.TestCase):
    def setUp(self) -> None:
        self.client = TestClient(main.app)

    def test_health_and_networks(self) -> None:
        self.assertEqual(self.client.get('/health').json(), {'status': 'ok'})

        response = self.client.get('/networks')
        self.assertEqual(response.status_code, 200)
        chain_ids = [item['chain_id'] for item in response.json()['networks']]
        self.assertIn(1337, chain_ids)
        self.assertIn(42161, chain_ids)

    def test_deploy_success(self) -> None:
        orchestrator = _orchestrator(_deployed())
        with patch.object(main, '_orchestrator', orchestrator):
            response = self.client.post('/deployments', json=DEPLOY_BODY)

        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(payload['contract_address'], TOKEN)
        self.assertEqual(payload['explorer_url'], f'https://etherscan.io/address/{TOKEN}')
        self.assertEqual(payload['transaction_url'], f'https://etherscan.io/tx/{TX_HASH}')

        config = orchestrator.deploy.await_args.args[0]
        self.assertEqual(config.initial_supply, '1000000')
        self.assertTrue(config.features.burnable)
        self.assertEqual(config.vesting[0].category, 'team')

    def test_deploy_persists_record_and_survives_store_failure(self) -> None:
        store = MagicMock()
        store.save = AsyncMock(side_effect=RuntimeError('db down'))
        publisher = MagicMock()

        with patch.object(main, '_orchestrator', _orchestrator(_deployed())), \
                patch.object(main, '_store', store), \
                patch.object(main, '_publisher', publisher):
            response = self.client.post('/deployments', json=DEPLOY_BODY)

        self.assertEqual(response.status_code, 200)
        record = store.save.await_args.args[0]
        self.assertEqual(record['token_symbol'], 'DEM')
        self.assertEqual(record['network'], 'ethereum')
        self.assertEqual(record['status'], 'deployed')
        publisher.publish.assert_called_once_with(record)

    def test_invalid_user_address(self) -> None:
        body = {**DEPLOY_BODY, 'user_address': '0x1234'}
        response = self.client.post('/deployments', json=body)
        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.json()['detail']['error'], 'invalid_address')

    def test_failed_deployment_maps_status_code(self) -> None:
        result = DeploymentResult(
            success=False,
            status=DeploymentStatus.FAILED,
            chain_id=1,
            transaction_hash=TX_HASH,
            error_message='not confirmed',
            error_kind='timeout',
            error_status_code=504,
            failed_state=DeploymentState.CONFIRMING
        )
        with patch.object(main, '_orchestrator', _orchestrator(result)):
            response = self.client.post('/deployments', json=DEPLOY_BODY)

        self.assertEqual(response.status_code, 504)
        detail = response.json()['detail']
        self.assertEqual(detail['error'], 'timeout')
        self.assertEqual(detail['state'], 'confirming')
        self.assertEqual(detail['transaction_hash'], TX_HASH)

    def test_estimate(self) -> None:
        orchestrator = MagicMock()
        orchestrator.estimate = AsyncMock(return_value=FeeEstimate(2_500_000, 20 * 10**9, 10**16))
        with patch.object(main, '_orchestrator', orchestrator):
            response = self.client.get('/deployments/estimate', params={'chain_id': 1})

        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(payload['native_symbol'], 'ETH')
        self.assertEqual(payload['gas_price_gwei'], '20')
        self.assertEqual(payload['deployment_fee'], '0.01')
        self.assertEqual(payload['total_cost'], '0.06')

        self.assertEqual(self.client.get('/deployments/estimate', params={'chain_id': 999999}).status_code, 404)

    def test_history_requires_store(self) -> None:
        with patch.object(main, '_store', None):
            response = self.client.get('/deployments', params={'user_address': USER})
        self.assertEqual(response.status_code, 503)

    def test_token_endpoints(self) -> None:
        info = TokenInfo(TOKEN, 'Demo', 'DEM', 18, '1000000', USER)
        service = MagicMock()
        service.user_token_descriptions = AsyncMock(return_value=[info])
        service.describe = AsyncMock(side_effect=ContractNotFound(TOKEN))

        with patch.object(main, '_query_service', service):
            listing = self.client.get('/tokens', params={'user_address': USER, 'chain_id': 56})
            detail = self.client.get(f'/tokens/{TOKEN}', params={'chain_id': 56})

        self.assertEqual(listing.status_code, 200)
        token = listing.json()['tokens'][0]
        self.assertEqual(token['symbol'], 'DEM')
        self.assertEqual(token['explorer_url'], f'https://bscscan.com/address/{TOKEN}')
        self.assertEqual(detail.status_code, 404)
        self.assertEqual(detail.json()['detail']['error'], 'contract_not_found')
