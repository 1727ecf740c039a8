from jamf_package_updater.cli import run

run()
