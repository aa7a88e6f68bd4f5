import pytest

from fairorder.service.cipher import KeystreamCipher, SRACipher

from fakes import ScriptedConnection


@pytest.fixture(params=[KeystreamCipher, SRACipher], ids=["keystream", "sra"])
def cipher(request):
    return request.param()


@pytest.fixture
def scripted():
    return ScriptedConnection()
