"""Entry point for the chronometer app: python -m chronometer"""

from chronometer.chronometer import main

if __name__ == "__main__":
    main()
