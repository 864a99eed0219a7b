import subprocess


def start():
    cmd = ';'.join(
        [
            "echo Flake8:",
            'flake8 userop_builder tests',
            "echo Mypy:",
            'mypy userop_builder'
        ])
    subprocess.run(cmd, shell=True)


if __name__ == "__main__":
    start()
