"""
Cairn Test Suite

Unit tests for encryption, serialization, scopes and the state stores, and
end-to-end tests of the apply/destroy engines, password rotation and the CLI.
"""
