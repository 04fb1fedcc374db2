import json
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from apps.tokenforge.chain_registry import (
    add_chain_params,
    explorer_url,
    load_factory_registry,
    load_networks,
    networks_payload,
    resolve,
    resolve_factory,
    supported_chain_ids
)
from apps.tokenforge.config import get_settings
from apps.tokenforge.errors import FactoryNotDeployed, UnsupportedNetwork

LOCAL_FACTORY = '0x5FbDB2315678afecb367f032d93F642f64180aa3'


class ChainRegistryTests(unittest.TestCase):
    def tearDown(self) -> None:
        get_settings.cache_clear()
        load_networks.cache_clear()
        load_factory_registry.cache_clear()

    def test_supported_networks(self) -> None:
        self.assertEqual(supported_chain_ids(), [1, 56, 137, 250, 1337, 42161])
        network = resolve(1)
        self.assertEqual(network.name, 'Ethereum')
        self.assertEqual(network.explorer_url, 'https://etherscan.io')
        self.assertEqual(resolve(1337).confirmation_depth, 0)

    def test_unknown_chain_is_rejected(self) -> None:
        with self.assertRaises(UnsupportedNetwork) as ctx:
            resolve(999999)
        self.assertEqual(ctx.exception.status_code, 404)

    def test_rpc_url_env_override(self) -> None:
        with patch.dict('os.environ', {'POLYGON_RPC_URL': 'https://polygon.example/rpc'}, clear=False):
            load_networks.cache_clear()
            self.assertEqual(resolve(137).rpc_url, 'https://polygon.example/rpc')

    def test_factory_resolution_uses_static_table(self) -> None:
        self.assertEqual(resolve_factory(1), '0x1234567890123456789012345678901234567890')
        with self.assertRaises(FactoryNotDeployed):
            resolve_factory(1337)
        with self.assertRaises(UnsupportedNetwork):
            resolve_factory(999999)

    def test_factory_registry_file_overrides(self) -> None:
        payload = {'factories': {'1337': LOCAL_FACTORY, '56': '', 'bogus': '0xabc'}}

        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / 'factories.json'
            path.write_text(json.dumps(payload), encoding='utf-8')

            with patch.dict('os.environ', {'FACTORY_REGISTRY_PATH': str(path)}, clear=False):
                get_settings.cache_clear()
                load_factory_registry.cache_clear()

                local = resolve_factory(1337)
                with self.assertRaises(FactoryNotDeployed):
                    resolve_factory(56)
                listing = networks_payload()

        self.assertEqual(local, LOCAL_FACTORY)
        by_chain = {item['chain_id']: item for item in listing['networks']}
        self.assertTrue(by_chain[1337]['factory_deployed'])
        self.assertFalse(by_chain[56]['factory_deployed'])
        self.assertIsNone(by_chain[56]['factory_address'])

    def test_invalid_registry_file_is_ignored(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / 'factories.json'
            path.write_text('{not json', encoding='utf-8')

            with patch.dict('os.environ', {'FACTORY_REGISTRY_PATH': str(path)}, clear=False):
                get_settings.cache_clear()
                load_factory_registry.cache_clear()
                self.assertEqual(load_factory_registry(), {'factories': {}})

    def test_explorer_and_wallet_params(self) -> None:
        network = resolve(56)
        self.assertEqual(explorer_url(network, '0xabc', 'address'), 'https://bscscan.com/address/0xabc')
        self.assertEqual(explorer_url(network, '0xdef'), 'https://bscscan.com/tx/0xdef')

        params = add_chain_params(network)
        self.assertEqual(params['chainId'], '0x38')
        self.assertEqual(params['nativeCurrency']['symbol'], 'BNB')
        self.assertEqual(params['rpcUrls'], [network.rpc_url])
