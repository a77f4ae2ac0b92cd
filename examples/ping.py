import signal

from rich import print

from ttlping import Pinger, Settings


def main():
    pinger = Pinger("8.8.8.8", Settings(interval=0.5, ttl=1), on_observation=print)
    signal.signal(signal.SIGINT, lambda *_: pinger.stop())
    print(pinger.start())


if __name__ == "__main__":
    main()
