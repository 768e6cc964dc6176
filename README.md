# moshkit

moshkit provides the building blocks of a roaming remote terminal session
over UDP. Each end keeps a copy of the shared state, and the two ends
exchange only the differences.

## What is included

- **Compression** (`moshkit.compressor`)
  - `compress` and `uncompress` handle zlib payloads.
  - Output is limited to `BUFFER_SIZE` bytes.
  - Bad, truncated or oversized input raises `CompressionError`.
- **Instructions and fragments** (`moshkit.fragment`)
  - `Instruction` is the unit of state synchronisation. It carries the protocol version, old, new, ack and throwaway numbers, a diff and chaff, and serialises with `to_bytes` / `from_bytes`.
  - `Fragmenter.make_fragments` compresses an instruction and cuts it into `Fragment`s of at most the given MTU.
  - `FragmentAssembly.add_fragment` collects fragments until an instruction is complete, and `get_assembly` returns it.
- **Packets** (`moshkit.packet`)
  - `Packet` and `Message` convert between a packet and a plaintext message.
  - The message holds a 64-bit nonce, which carries the `Direction` and the sequence number, followed by two 16-bit timestamps and the payload.
- **Network utilities** (`moshkit.netutil`)
  - `timestamp`, `timestamp16` and `timestamp_diff` read and compare the millisecond clock.
  - `parse_port_range` reads `PORT` or `LOW:HIGH` and raises `ValueError` when the value is invalid.
  - `RttEstimator` smooths round-trip samples and gives a retransmission timeout clamped to 50–1000 ms.
  - `NetworkError` is the network-layer exception.
- **Sender and transport** (`moshkit.sender`, `moshkit.transport`)
  - `TransportSender` decides when to send a diff or an empty ack. It tracks acknowledgments and runs the shutdown sequence.
  - `Transport` combines a sender with the receiving side and its queue of received states (`recv`, `get_remote_diff`, `tick`, `wait_time`, `start_shutdown`).
  - States must follow the `SyncState` protocol: `diff_from`, `init_diff`, `apply_string`, `subtract`, `reset_input`, `copy` and equality.
- **Server front-end helpers**
  - `moshkit.server_args` handles command-line parsing: `parse_server_args`, `ServerOptions`, `UsageError`, `server_usage` and `version_text`.
  - `moshkit.server_env` handles the environment: `ssh_connection_ip`, `parse_timeout_env`, `login_shell`, `resolve_command` and `child_environment`.
  - `moshkit.motd` handles login notices: `print_motd`, `motd_hushed`, `chdir_homedir`, `unattached_sessions` and `format_unattached_warning`.

## What it does not do

- The package has no UDP socket layer. `Transport` and `TransportSender` work with any connection object you supply that provides:
  - `send`, `recv`, `timeout`, `fds`, `port` and `set_last_roundtrip_success`;
  - the attributes `srtt`, `mtu`, `has_remote_addr` and `send_error`.
- It has no encryption.
- It has no terminal emulator.
- It installs no command. There is no client or server program to run, only the library pieces above.

## Installation

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Examples

Compression round trip:

```python
from moshkit.compressor import compress, uncompress

data = b"hello, terminal" * 10
assert uncompress(compress(data)) == data
```

Port specifications:

```python
from moshkit.netutil import parse_port_range

assert parse_port_range("60001:60010") == (60001, 60010)
assert parse_port_range("60001") == (60001, 60001)
```

Wrapping 16-bit timestamps:

```python
from moshkit.netutil import timestamp_diff

assert timestamp_diff(5, 65535) == 6
```

Fragmenting an instruction and reassembling it:

```python
from moshkit.fragment import FragmentAssembly, Fragmenter, Instruction

inst = Instruction(protocol_version=2, old_num=0, new_num=1, diff=b"some diff")
assembly = FragmentAssembly()
for frag in Fragmenter().make_fragments(inst, 500):
    done = assembly.add_fragment(frag)
assert done and assembly.get_assembly() == inst
```

Packets and messages:

```python
from moshkit.packet import Direction, Packet

packet = Packet(7, Direction.TO_CLIENT, 100, 0xFFFF, b"payload")
assert Packet.from_message(packet.to_message()) == packet
```

Parsing server arguments:

```python
import os
from moshkit.server_args import parse_server_args

options = parse_server_args(["server", "new", "-p", "60001", "-c", "256"], os.environ)
assert options.desired_port == "60001" and options.colors == 256
```