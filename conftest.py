pytest_plugins = ["dbbootstrap.testing.plugin"]
