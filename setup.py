from setuptools import setup

# Updated by a script (in the future maybe)
VERSION = "0.1.0-dev"

with open('README.md', 'r', encoding='utf-8') as f:
    readme = f.read()

setup(
    name='phrepl',
    version=VERSION,
    # phrepl has no __init__.py, so find_packages would not see it
    packages=['phrepl'],

    # https://stackoverflow.com/a/1857436
    package_data={'phrepl': ['php.lark']},
    include_package_data=True,

    description='An interactive read-eval-print loop for a PHP-like language',
    long_description=readme,
    long_description_content_type='text/markdown',
    license='MIT',
    keywords='repl php interpreter lark',
    python_requires='>=3.10',
    install_requires=[
        'lark',
    ],
    extras_require={
        'dev': [
            'pytest',
            'flake8',
        ]
    },
    classifiers=[
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Intended Audience :: Developers",
        "Development Status :: 3 - Alpha",
    ],
    scripts=['.bin/phrepl']
)
