import dns.flags
import dns.message
import dns.rcode
import pytest

from dnscrypt_proxy.context import PluginAction, QueryContext, ReturnCode
from dnscrypt_proxy.undelegated import BlockUndelegatedPlugin, is_undelegated


@pytest.mark.parametrize(
    "qname",
    ["home.arpa", "router.home.arpa", "localhost", "fritz.box", "1", "x.10.in-addr.arpa", "test"],
)
def test_undelegated_names(qname):
    assert is_undelegated(qname)


@pytest.mark.parametrize(
    "qname", ["example.com", "mylocalhost", "notest", "arpa", "", "."]
)
def test_delegated_names(qname):
    assert not is_undelegated(qname)


def test_plugin_answers_nxdomain():
    msg = dns.message.make_query("printer.local", "A")
    ctx = QueryContext(qname="printer.local")
    BlockUndelegatedPlugin().eval(ctx, msg)
    assert ctx.action is PluginAction.SYNTH
    assert ctx.return_code is ReturnCode.SYNTH
    response = ctx.synth_response
    assert response.rcode() == dns.rcode.NXDOMAIN
    assert response.id == msg.id
    assert response.flags & dns.flags.QR
    assert response.question[0].name == msg.question[0].name


def test_plugin_leaves_public_names_alone():
    ctx = QueryContext(qname="example.com")
    BlockUndelegatedPlugin().eval(ctx, dns.message.make_query("example.com", "A"))
    assert ctx.synth_response is None
    assert ctx.action is PluginAction.CONTINUE