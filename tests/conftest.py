pytest_plugins = ["migratory.testing.fixtures"]
