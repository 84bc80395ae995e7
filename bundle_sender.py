# Minimal example of sending orders to Flashbots MEV-Share
# 1) Sends a private self-transfer and waits for it to land
# 2) Builds a bundle of 2 self-transfers, submits it for the next 20 blocks and reports how it resolved
# Settings come from the environment (or a .env file), see mev_share/config.py

import logging

import web3

from mev_share import (
    HintPreference,
    MevShareClient,
    PrivacyPreferences,
    SendBundleParams,
    SendTransactionParams,
    Settings,
    SignedItem,
)

PRIORITY_FEE = web3.Web3.to_wei(2, 'gwei')
TARGET_BLOCKS = 20

settings = Settings.from_env().require('provider_url', 'auth_privkey', 'sender_privkey')
logging.basicConfig(level=settings.log_level, format='%(asctime)s %(levelname)s %(name)s: %(message)s')
logger = logging.getLogger('bundle_sender')

w3 = web3.Web3(web3.HTTPProvider(settings.provider_url))
sender = w3.eth.account.from_key(settings.sender_privkey)

PRIVACY = PrivacyPreferences(
    hints=frozenset({HintPreference.HASH, HintPreference.CALLDATA, HintPreference.LOGS,
                     HintPreference.CONTRACT_ADDRESS, HintPreference.FUNCTION_SELECTOR}),
    builders=('flashbots',),
)


def sign_self_transfer(nonce, value):
    base_fee = w3.eth.get_block('latest')['baseFeePerGas']
    tx = dict(
        chainId=settings.network.chain_id,
        nonce=nonce,
        maxFeePerGas=base_fee * 2 + PRIORITY_FEE,
        maxPriorityFeePerGas=PRIORITY_FEE,
        gas=21000,
        to=sender.address,
        value=value,
        data=b'',
    )
    return w3.eth.account.sign_transaction(tx, settings.sender_privkey).raw_transaction


def create_example_bundle(current_block):
    nonce = w3.eth.get_transaction_count(sender.address)
    return SendBundleParams(
        body=[
            SignedItem(sign_self_transfer(nonce, 1)),
            SignedItem(sign_self_transfer(nonce + 1, 2)),
        ],
        block=current_block + 1,
        max_block=current_block + 1 + TARGET_BLOCKS,
        privacy=PRIVACY,
    )


if __name__ == '__main__':
    balance = w3.eth.get_balance(sender.address)
    assert balance > 2 * 21000 * PRIORITY_FEE, 'Not enough money on account, cannot pay for gas'

    client = MevShareClient.from_settings(settings)

    current_block = w3.eth.block_number
    private_tx = SendTransactionParams(
        tx=sign_self_transfer(w3.eth.get_transaction_count(sender.address), 1),
        max_block_number=current_block + TARGET_BLOCKS,
        privacy=PRIVACY,
    )
    handle = client.send_private_transaction(private_tx)
    logger.info('Private transaction %s accepted, waiting for it to land', handle.relay_hash)
    logger.info('Private transaction outcome: %s', client.resolve(handle))

    bundle = create_example_bundle(w3.eth.block_number)
    handle = client.send_bundle(bundle)
    logger.info('Bundle %s accepted, waiting up to block %s', handle.relay_hash, handle.window.max_block)
    logger.info('Bundle outcome: %s', client.resolve(handle))
