"""Consumed interface of the ERC-8004 registries.

Only the functions and events this package calls are listed; the contracts'
own logic is out of scope.
"""

REPUTATION_REGISTRY_ABI = [
    {
        'inputs': [],
        'name': 'getIdentityRegistry',
        'outputs': [{'internalType': 'address', 'name': '', 'type': 'address'}],
        'stateMutability': 'view',
        'type': 'function',
    },
    {
        'inputs': [
            {'internalType': 'uint256', 'name': 'agentId', 'type': 'uint256'},
            {'internalType': 'address', 'name': 'clientAddress', 'type': 'address'},
        ],
        'name': 'getLastIndex',
        'outputs': [{'internalType': 'uint64', 'name': '', 'type': 'uint64'}],
        'stateMutability': 'view',
        'type': 'function',
    },
    {
        'inputs': [
            {'internalType': 'uint256', 'name': 'agentId', 'type': 'uint256'},
            {'internalType': 'uint8', 'name': 'score', 'type': 'uint8'},
            {'internalType': 'bytes32', 'name': 'tag1', 'type': 'bytes32'},
            {'internalType': 'bytes32', 'name': 'tag2', 'type': 'bytes32'},
            {'internalType': 'string', 'name': 'feedbackUri', 'type': 'string'},
            {'internalType': 'bytes32', 'name': 'feedbackHash', 'type': 'bytes32'},
            {'internalType': 'bytes', 'name': 'feedbackAuth', 'type': 'bytes'},
        ],
        'name': 'giveFeedback',
        'outputs': [],
        'stateMutability': 'nonpayable',
        'type': 'function',
    },
    {
        'inputs': [
            {'internalType': 'uint256', 'name': 'agentId', 'type': 'uint256'},
            {'internalType': 'address[]', 'name': 'clientAddresses', 'type': 'address[]'},
            {'internalType': 'bytes32', 'name': 'tag1', 'type': 'bytes32'},
            {'internalType': 'bytes32', 'name': 'tag2', 'type': 'bytes32'},
        ],
        'name': 'getSummary',
        'outputs': [
            {'internalType': 'uint64', 'name': 'count', 'type': 'uint64'},
            {'internalType': 'uint8', 'name': 'averageScore', 'type': 'uint8'},
        ],
        'stateMutability': 'view',
        'type': 'function',
    },
    {
        'anonymous': False,
        'inputs': [
            {'indexed': True, 'internalType': 'uint256', 'name': 'agentId', 'type': 'uint256'},
            {'indexed': True, 'internalType': 'address', 'name': 'clientAddress', 'type': 'address'},
            {'indexed': False, 'internalType': 'uint8', 'name': 'score', 'type': 'uint8'},
            {'indexed': True, 'internalType': 'bytes32', 'name': 'tag1', 'type': 'bytes32'},
            {'indexed': False, 'internalType': 'bytes32', 'name': 'tag2', 'type': 'bytes32'},
            {'indexed': False, 'internalType': 'string', 'name': 'feedbackUri', 'type': 'string'},
            {'indexed': False, 'internalType': 'bytes32', 'name': 'feedbackHash', 'type': 'bytes32'},
        ],
        'name': 'NewFeedback',
        'type': 'event',
    },
]

IDENTITY_REGISTRY_ABI = [
    {
        'inputs': [{'internalType': 'uint256', 'name': 'tokenId', 'type': 'uint256'}],
        'name': 'ownerOf',
        'outputs': [{'internalType': 'address', 'name': '', 'type': 'address'}],
        'stateMutability': 'view',
        'type': 'function',
    },
    {
        'inputs': [
            {'internalType': 'address', 'name': 'owner', 'type': 'address'},
            {'internalType': 'address', 'name': 'operator', 'type': 'address'},
        ],
        'name': 'isApprovedForAll',
        'outputs': [{'internalType': 'bool', 'name': '', 'type': 'bool'}],
        'stateMutability': 'view',
        'type': 'function',
    },
    {
        'inputs': [{'internalType': 'uint256', 'name': 'tokenId', 'type': 'uint256'}],
        'name': 'getApproved',
        'outputs': [{'internalType': 'address', 'name': '', 'type': 'address'}],
        'stateMutability': 'view',
        'type': 'function',
    },
    {
        'inputs': [{'internalType': 'uint256', 'name': 'tokenId', 'type': 'uint256'}],
        'name': 'tokenURI',
        'outputs': [{'internalType': 'string', 'name': '', 'type': 'string'}],
        'stateMutability': 'view',
        'type': 'function',
    },
]
