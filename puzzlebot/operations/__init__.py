"""
Operations layer for the Puzzle Arc progression engine.

Operations compose database access and services into the multi-step
workflows a transport calls directly:
- PlayerOperations: player lifecycle and the hint-coin ledger
- PuzzleOperations: puzzle catalogue, activation and rotation
- GuessOperations: weekly guess submission and post-solve progression
- DuelOperations: duel lifecycle, race arbitration and wager settlement
"""
