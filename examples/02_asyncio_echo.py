import asyncio

from udplink import AsyncioPoller, Callbacks, Mode, UdpEndpoint, parse_address, register


class Echo:
    def __init__(self, endpoint):
        self.endpoint = endpoint

    def on_read(self, payload, status, sender):
        if status < 0:
            return 1
        self.endpoint.send(payload, sender)
        return 0

    def on_close(self):
        return 1


async def main():
    address = parse_address("127.0.0.1:51915")
    poller = AsyncioPoller()

    with UdpEndpoint.open(Mode.SERVER, address) as server, \
            UdpEndpoint.open(Mode.CLIENT, address) as client:
        register(server, None, Callbacks.for_handler(Echo(server), poller))

        replies = asyncio.Queue()
        register(
            client,
            replies,
            Callbacks.for_poller(poller, lambda q, payload, status, sender: q.put_nowait(bytes(payload)) or 0),
        )

        for word in (b"hello", b"udp", b"world"):
            client.send(word, address)
            reply = await asyncio.wait_for(replies.get(), timeout=1.0)
            print(f"echo: {reply!r}")

    poller.close()


if __name__ == "__main__":
    asyncio.run(main())
