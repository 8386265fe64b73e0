"""
Run with: python -m gltfinstancer
"""
import sys

from gltfinstancer.main import main

if __name__ == "__main__":
    sys.exit(main())
