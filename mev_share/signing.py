from eth_account import Account
from eth_account.messages import encode_defunct
from web3 import Web3


def flashbots_signature(body, private_key):
    """
    Value of the X-Flashbots-Signature header for a request body.

    The relay expects `<address>:<signature>`, where the signature is an
    EIP-191 personal_sign of the hex keccak of the exact body bytes sent.
    """
    account = Account.from_key(private_key)
    message = encode_defunct(text=Web3.to_hex(Web3.keccak(text=body)))
    signature = Account.sign_message(message, private_key=private_key).signature
    return '{}:{}'.format(account.address, Web3.to_hex(signature))
