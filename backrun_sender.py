# Minimal example of backrunning MEV-Share hints
# Listens to the hint stream and, for the first few transaction hints, sends a bundle of
# [their tx, our self-transfer] for the next blocks, then reports how each bundle resolved.

import logging

import web3

from mev_share import (
    EventTypeFilter,
    HashItem,
    MevShareClient,
    PartiallyLanded,
    SendBundleParams,
    Settings,
    SignedItem,
)

PRIORITY_FEE = web3.Web3.to_wei(2, 'gwei')
TARGET_BLOCKS = 10
MAX_BACKRUNS = 3

settings = Settings.from_env().require('provider_url', 'auth_privkey', 'sender_privkey')
logging.basicConfig(level=settings.log_level, format='%(asctime)s %(levelname)s %(name)s: %(message)s')
logger = logging.getLogger('backrun_sender')

w3 = web3.Web3(web3.HTTPProvider(settings.provider_url))
sender = w3.eth.account.from_key(settings.sender_privkey)


def sign_backrun_tx(nonce):
    base_fee = w3.eth.get_block('latest')['baseFeePerGas']
    tx = dict(
        chainId=settings.network.chain_id,
        nonce=nonce,
        maxFeePerGas=base_fee * 2 + PRIORITY_FEE,
        maxPriorityFeePerGas=PRIORITY_FEE,
        gas=21000,
        to=sender.address,
        value=0,
        data=b'',
    )
    return w3.eth.account.sign_transaction(tx, settings.sender_privkey).raw_transaction


def backrun(client, hint):
    current_block = w3.eth.block_number
    bundle = SendBundleParams(
        body=[HashItem(hint.hash), SignedItem(sign_backrun_tx(w3.eth.get_transaction_count(sender.address)))],
        block=current_block + 1,
        max_block=current_block + TARGET_BLOCKS,
    )
    return client.send_bundle(bundle)


if __name__ == '__main__':
    client = MevShareClient.from_settings(settings)
    handles = []

    with client.subscribe(EventTypeFilter.TRANSACTION) as stream:
        for hint in stream:
            logger.info('Hint %s #%s discloses %s', hint.hash, hint.sequence, sorted(hint.disclosed_fields))
            handles.append(backrun(client, hint))
            if len(handles) >= MAX_BACKRUNS:
                break

    for handle, outcome in zip(handles, client.resolve_many(handles)):
        if isinstance(outcome, PartiallyLanded):
            # their tx landed without our backrun
            logger.info('%s: target landed, backrun missed %s', handle, outcome.missing)
        else:
            logger.info('%s: %s', handle, outcome)
