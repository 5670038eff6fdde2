"""
RestQL core unit tests
"""

import unittest
from .api import APITests
from .associations import AssociationRewriterTests
from .cli import StandaloneCLITests
from .conflicts import ConflictDecodingTests, ConflictResolutionTests, ParanoidTests, ViolationParsingTests
from .descriptors import DescriptorTests, IndexResolverTests
from .misc import ConfigTests, LoggingTests
from .querying import QueryingTests
from .writes import DispatchTests, PartitionTests, WriteOrchestratorTests


TEST_CLASSES = [
    APITests,
    AssociationRewriterTests,
    ConfigTests,
    ConflictDecodingTests,
    ConflictResolutionTests,
    DescriptorTests,
    DispatchTests,
    IndexResolverTests,
    LoggingTests,
    ParanoidTests,
    PartitionTests,
    QueryingTests,
    StandaloneCLITests,
    ViolationParsingTests,
    WriteOrchestratorTests,
]


def get_suite() -> unittest.TestSuite:
    suite = unittest.TestSuite()
    for cls in TEST_CLASSES:
        for fixture in filter(lambda f: f.startswith("test_"), dir(cls)):
            suite.addTest(cls(fixture))
    return suite
