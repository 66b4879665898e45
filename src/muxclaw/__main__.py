from muxclaw.main import muxclaw

if __name__ == "__main__":  # pragma: no cover
    muxclaw()
