from setuptools import find_packages, setup

package_name = 'swathproc'

setup(
    name=package_name,
    version='0.1.0',
    packages=find_packages(exclude=['test']),
    install_requires=[
        'setuptools',
        'numpy',
        'scipy',
        'pyproj',
        'PyYAML',
    ],
    python_requires='>=3.8',
    zip_safe=True,
    maintainer='Shekhar Devm Upadhyay',
    maintainer_email='sdup@kth.se',
    description='Swath sonar bathymetry reprocessing: navigation, attitude, '
                'sound velocity, tide and edit corrections',
    license='Apache-2.0',
    extras_require={
        'test': [
            'pytest',
        ],
    },
    entry_points={
        'console_scripts': [
            'swathproc = swathproc.driver:main',
        ],
    },
)
