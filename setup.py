from setuptools import setup

setup(
    name='btrf-tree',
    version='1.0',
    py_modules=[
        'backtracking_search',
        'btrf_tree',
        'errors',
        'leaf_index',
        'pixel_feature',
        'split_search',
        'tree_builder',
        'tree_io',
    ],
    description='Backtracking regression tree for pixel to 3D world coordinate prediction',
    long_description=open('README.md').read(),
    long_description_content_type='text/markdown',
    python_requires='>=3.10',
    install_requires=['numpy'],
    extras_require={'test': ['pytest>=7']},
)
