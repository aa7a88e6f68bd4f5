import asyncio
import secrets

import pytest

from fairorder.errors import (
    CipherMisuseError,
    ConfigurationError,
    ConsensusTimeout,
    ProtocolViolation
)
from fairorder.model import MessageKind
from fairorder.service.cipher import KeystreamCipher, KeystreamKey, SRACipher
from fairorder.service.cipher.sra import PRIME, SUBGROUP_ORDER
from fairorder.service.consensus.coordinator import ConsensusCoordinator
from fairorder.service.consensus.deck import (
    new_deck,
    shuffle_and_encrypt,
    decrypt_deck,
    encode_deck,
    decode_deck
)
from fairorder.service.consensus.machine import OrderMachine, State
from fairorder.service.router import MemoryRouter

from fakes import TamperingRouter, round_message, reveal_message


async def run_against(cipher, peer_count, script_index, script, timeout=5):
    """Honest machines for every peer but `script_index`, which runs `script`"""
    router = MemoryRouter(0, 0)
    connections = [await router.register() for _ in range(peer_count)]
    machines = {
        index: OrderMachine(peer_count, index, connection, cipher=cipher)
        for index, connection in enumerate(connections, start=1)
        if index != script_index
    }

    script_task = asyncio.create_task(script(connections[script_index - 1]))
    results = await asyncio.gather(
        *(machine.run(timeout) for machine in machines.values()),
        return_exceptions=True
    )
    script_task.cancel()
    await asyncio.gather(script_task, return_exceptions=True)
    await router.close()
    return machines, dict(zip(machines, results))


# ============================================================================
# Honest runs
# ============================================================================

@pytest.mark.asyncio
async def test_three_peers_agree_on_an_order(cipher):
    coordinator = ConsensusCoordinator(MemoryRouter(0, 0), cipher=cipher)
    order = await coordinator.run(3, timeout=10)

    assert sorted(order) == [1, 2, 3]
    for machine in coordinator.machines:
        assert machine.state is State.DONE
        assert machine.order == order
        assert machine.error is None
        assert [(state, sender) for state, sender, _ in machine.transcript] == [
            (State.AWAIT_ROUND, 1), (State.AWAIT_ROUND, 2), (State.AWAIT_ROUND, 3),
            (State.REVEAL, 1), (State.REVEAL, 2), (State.REVEAL, 3),
        ]


@pytest.mark.asyncio
async def test_full_circle_takes_exactly_one_round_per_peer():
    coordinator = ConsensusCoordinator(MemoryRouter(0, 0), cipher=KeystreamCipher())
    await coordinator.run(5, timeout=10)

    for machine in coordinator.machines:
        assert machine.round.rounds_completed == 5
        assert len(machine.round.digests) == 5
        assert machine.round.last_deck.layers() == machine.round.layers
        assert len(machine.round.revealed) == 5


@pytest.mark.asyncio
async def test_two_peers_with_latency():
    coordinator = ConsensusCoordinator(MemoryRouter(0.005, 0.005), cipher=KeystreamCipher())
    order = await coordinator.run(2, timeout=10)
    assert sorted(order) == [1, 2]


@pytest.mark.asyncio
async def test_four_peers_with_latency():
    coordinator = ConsensusCoordinator(MemoryRouter(0.01, 0.01), cipher=KeystreamCipher())
    order = await coordinator.run(4, timeout=10)
    assert sorted(order) == [1, 2, 3, 4]


@pytest.mark.asyncio
async def test_orders_vary_between_runs():
    orders = set()
    for _ in range(20):
        coordinator = ConsensusCoordinator(MemoryRouter(0, 0), cipher=KeystreamCipher())
        orders.add(await coordinator.run(3, timeout=10))
    assert len(orders) > 1


@pytest.mark.asyncio
async def test_machine_runs_once(scripted):
    machine = OrderMachine(2, 2, scripted, cipher=KeystreamCipher())
    with pytest.raises(ConsensusTimeout):
        await machine.run(timeout=0.01)
    with pytest.raises(RuntimeError, match="already ran"):
        await machine.run()


# ============================================================================
# Configuration
# ============================================================================

@pytest.mark.asyncio
@pytest.mark.parametrize("peer_count,self_index", [
    (1, 1),
    (0, 1),
    (257, 1),
    (3, 0),
    (3, 4),
    (3, "1"),
])
async def test_invalid_configuration(scripted, peer_count, self_index):
    machine = OrderMachine(peer_count, self_index, scripted, cipher=KeystreamCipher())
    with pytest.raises(ConfigurationError):
        await machine.run()
    assert machine.state is State.FAILED
    assert isinstance(machine.error, ConfigurationError)
    assert scripted.sent == []


@pytest.mark.asyncio
async def test_missing_connection():
    machine = OrderMachine(3, 1, None, cipher=KeystreamCipher())
    with pytest.raises(ConfigurationError, match="connection is missing"):
        await machine.run()


@pytest.mark.asyncio
async def test_not_a_cipher(scripted):
    machine = OrderMachine(3, 1, scripted, cipher=object())
    with pytest.raises(ConfigurationError, match="not a commutative cipher"):
        await machine.run()
    assert scripted.sent == []


# ============================================================================
# Turn order and message shape
# ============================================================================

@pytest.mark.asyncio
async def test_out_of_turn_round_fails_without_sending(scripted):
    machine = OrderMachine(3, 2, scripted, cipher=KeystreamCipher())
    scripted.feed(round_message(3, b"{}"))

    with pytest.raises(ProtocolViolation) as excinfo:
        await machine.run(timeout=1)
    assert excinfo.value.peer == 3
    assert "unexpected peer" in str(excinfo.value)
    assert machine.state is State.FAILED
    assert scripted.sent == []


@pytest.mark.asyncio
async def test_initiator_rejects_a_round_before_its_echo(scripted):
    machine = OrderMachine(2, 1, scripted, cipher=KeystreamCipher())
    scripted.feed(round_message(2, b"{}"))

    with pytest.raises(ProtocolViolation) as excinfo:
        await machine.run(timeout=1)
    assert excinfo.value.peer == 2
    # Only the opening round went out.
    assert [message.kind for message in scripted.sent] == [MessageKind.ROUND]


@pytest.mark.asyncio
async def test_reveal_during_shuffle_rounds(scripted):
    machine = OrderMachine(3, 2, scripted, cipher=KeystreamCipher())
    scripted.feed(reveal_message(1, b"\x00" * 16))

    with pytest.raises(ProtocolViolation, match="unexpected reveal message"):
        await machine.run(timeout=1)


@pytest.mark.asyncio
async def test_undecodable_deck(scripted):
    machine = OrderMachine(3, 2, scripted, cipher=KeystreamCipher())
    scripted.feed(round_message(1, b"garbage"))

    with pytest.raises(ProtocolViolation, match="undecodable deck") as excinfo:
        await machine.run(timeout=1)
    assert excinfo.value.peer == 1


@pytest.mark.asyncio
async def test_round_without_a_new_layer(scripted):
    machine = OrderMachine(3, 2, scripted, cipher=KeystreamCipher())
    scripted.feed(round_message(1, encode_deck(new_deck(3))))

    with pytest.raises(ProtocolViolation, match="exactly one encryption layer"):
        await machine.run(timeout=1)
    assert scripted.sent == []


@pytest.mark.asyncio
async def test_round_with_two_new_layers(scripted):
    cipher = KeystreamCipher()
    deck = new_deck(3)
    shuffle_and_encrypt(deck, cipher, cipher.generate_key())
    shuffle_and_encrypt(deck, cipher, cipher.generate_key())

    machine = OrderMachine(3, 2, scripted, cipher=cipher)
    scripted.feed(round_message(1, encode_deck(deck)))

    with pytest.raises(ProtocolViolation, match="exactly one encryption layer"):
        await machine.run(timeout=1)


@pytest.mark.asyncio
async def test_duplicated_card(scripted):
    cipher = KeystreamCipher()
    deck = new_deck(3)
    shuffle_and_encrypt(deck, cipher, cipher.generate_key())
    deck.cards[1] = deck.cards[0].copy()

    machine = OrderMachine(3, 2, scripted, cipher=cipher)
    scripted.feed(round_message(1, encode_deck(deck)))

    with pytest.raises(ProtocolViolation, match="duplicated"):
        await machine.run(timeout=1)


@pytest.mark.asyncio
async def test_timeout_is_not_a_violation(scripted):
    machine = OrderMachine(3, 2, scripted, cipher=KeystreamCipher())

    with pytest.raises(ConsensusTimeout):
        await machine.run(timeout=0.05)
    assert machine.state is State.FAILED
    assert isinstance(machine.error, ConsensusTimeout)
    assert scripted.sent == []


# ============================================================================
# Misbehaving peers
# ============================================================================

@pytest.mark.asyncio
async def test_dropped_card_is_attributed(cipher):
    async def drop_a_card(connection):
        first = await connection.receive()
        deck = decode_deck(first.payload)
        shuffle_and_encrypt(deck, cipher, cipher.generate_key())
        deck.cards.pop()
        await connection.send(round_message(2, encode_deck(deck)))

    machines, results = await run_against(cipher, 3, 2, drop_a_card)

    for index in (1, 3):
        assert isinstance(results[index], ProtocolViolation)
        assert results[index].peer == 2
        assert "deck has 2 cards" in str(results[index])
        assert machines[index].state is State.FAILED


@pytest.mark.asyncio
@pytest.mark.parametrize("disclose,reason", [
    (lambda cipher: cipher.export_key(cipher.generate_key()), "does not match"),
    (lambda cipher: b"\x00", "undecodable key"),
])
async def test_bad_disclosed_key_is_attributed(cipher, disclose, reason):
    async def honest_round_then_bad_key(connection):
        first = await connection.receive()
        deck = decode_deck(first.payload)
        shuffle_and_encrypt(deck, cipher, cipher.generate_key())
        await connection.send(round_message(2, encode_deck(deck)))
        # Own echo, round of peer 3, key of peer 1
        for _ in range(3):
            await connection.receive()
        await connection.send(reveal_message(2, disclose(cipher)))

    machines, results = await run_against(cipher, 3, 2, honest_round_then_bad_key)

    for index in (1, 3):
        assert isinstance(results[index], ProtocolViolation)
        assert results[index].peer == 2
        assert reason in str(results[index])
        assert machines[index].order is None


@pytest.mark.asyncio
async def test_tampered_echo_is_detected(cipher):
    def reorder_own_echo(message):
        if message.sender == 1 and message.kind is MessageKind.ROUND:
            deck = decode_deck(message.payload)
            deck.cards.reverse()
            return round_message(1, encode_deck(deck))
        return message

    coordinator = ConsensusCoordinator(TamperingRouter(MemoryRouter(0, 0), 1, reorder_own_echo), cipher=cipher)
    with pytest.raises(ProtocolViolation, match="echo") as excinfo:
        await coordinator.run(3, timeout=5)
    assert excinfo.value.peer == 1
    assert coordinator.machines[0].state is State.FAILED


@pytest.mark.asyncio
async def test_stripped_own_layer_is_detected(cipher):
    own_layer = []

    def strip_first_layer(message):
        if message.kind is not MessageKind.ROUND:
            return message
        deck = decode_deck(message.payload)
        if message.sender == 1:
            own_layer.extend(deck.layers())
            return message
        for card in deck.cards:
            card.nonces.pop(own_layer[0], None)
        return round_message(message.sender, encode_deck(deck))

    coordinator = ConsensusCoordinator(TamperingRouter(MemoryRouter(0, 0), 1, strip_first_layer), cipher=cipher)
    with pytest.raises(ProtocolViolation, match="own key") as excinfo:
        await coordinator.run(3, timeout=5)
    assert excinfo.value.peer == 2


# ============================================================================
# Cipher misuse
# ============================================================================

class FixedKeyCipher(KeystreamCipher):
    """Hands out the same key every time"""

    def generate_key(self):
        return KeystreamKey(b"\x07" * 16)


@pytest.mark.asyncio
async def test_cipher_misuse_is_not_a_run_failure():
    coordinator = ConsensusCoordinator(MemoryRouter(0, 0), cipher=FixedKeyCipher())
    with pytest.raises(CipherMisuseError, match="encrypt twice"):
        await coordinator.run(2, timeout=5)

    # Peer 2 crashed while re-encrypting with a key already on the deck.
    assert coordinator.machines[1].state is State.AWAIT_ROUND
    assert coordinator.machines[1].error is None


# ============================================================================
# Unlinkability (SRA)
# ============================================================================

@pytest.mark.asyncio
async def test_own_layer_nonces_do_not_follow_the_cards():
    coordinator = ConsensusCoordinator(MemoryRouter(0, 0), cipher=SRACipher())
    order = await coordinator.run(4, timeout=30)

    initiator = coordinator.machines[0]
    own_layer = initiator.round.digests[1]
    sent = initiator.round.sent_deck
    ranks = decrypt_deck(sent.copy(), initiator.cipher, [initiator.round.revealed[1]])

    # Nonce -> rank as peer 1 saw it when adding its layer
    tracked = {card.nonces[own_layer]: rank.data[0] for card, rank in zip(sent.cards, ranks.cards)}
    assert len(tracked) == 1

    final_tags = {card.nonces[own_layer] for card in initiator.round.last_deck.cards}
    assert final_tags == set(tracked)
    assert sorted(order) == [1, 2, 3, 4]


@pytest.mark.asyncio
async def test_final_deck_is_uniform_in_residuosity():
    coordinator = ConsensusCoordinator(MemoryRouter(0, 0), cipher=SRACipher())
    await coordinator.run(4, timeout=30)

    for card in coordinator.machines[0].round.last_deck.cards:
        assert pow(int.from_bytes(card.data, "big"), SUBGROUP_ORDER, PRIME) == 1


@pytest.mark.asyncio
async def test_sra_round_with_per_card_nonces_is_rejected(scripted):
    cipher = SRACipher()
    key = cipher.generate_key()
    deck = new_deck(3)
    shuffle_and_encrypt(deck, cipher, key)
    for card in deck.cards:
        card.nonces[key.identifier] = secrets.token_bytes(16)

    machine = OrderMachine(3, 2, scripted, cipher=cipher)
    scripted.feed(round_message(1, encode_deck(deck)))

    with pytest.raises(ProtocolViolation, match="not a valid ciphertext") as excinfo:
        await machine.run(timeout=5)
    assert excinfo.value.peer == 1
    assert scripted.sent == []
