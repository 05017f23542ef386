"""PiMaze coin economy backend"""
