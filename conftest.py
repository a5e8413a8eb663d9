import matplotlib

matplotlib.use("Agg")

pytest_plugins = ["trajconserve.tests.utils.fixtures"]
