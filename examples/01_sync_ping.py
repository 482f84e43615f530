from udplink import Mode, UdpEndpoint, parse_address


def main():
    address = parse_address("127.0.0.1:51914")

    with UdpEndpoint.open(Mode.SERVER, address) as server, \
            UdpEndpoint.open(Mode.CLIENT, address) as client:
        client.send(b"ping", address)

        data, sender = server.receive(timeout_ms=1000)
        print(f"server got {data!r} from {sender}")
        server.send(b"pong", sender)

        reply, _ = client.receive(timeout_ms=1000)
        print(f"client got {reply!r}")
        assert reply == b"pong", f"Expected b'pong', got {reply!r}"


if __name__ == "__main__":
    main()
