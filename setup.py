from setuptools import setup

REQUIRED = [
    'Pillow>=9.1.0',
    'Jinja2',
]

setup(
    name='spracker',
    version='0.1.0',
    license='BSD',
    description='Stack a folder of sprite images into a sprite-sheet with CSS/SCSS.',
    long_description=('spracker is a simple command line tool that stacks the '
                      'images of a folder into a single sprite-sheet and '
                      'generates SCSS variables, mixins and CSS classes that '
                      'address every sprite by name, including high density '
                      '(name@2x) sprites.'),
    keywords='sprites css scss retina',
    py_modules=['spracker'],
    entry_points={
        'console_scripts': ['spracker=spracker:main'],
    },
    install_requires=REQUIRED,
    extras_require={
        'test': ['pytest'],
    },
    python_requires='>=3.7',
    classifiers=[
        'Programming Language :: Python :: 3',
        'Development Status :: 4 - Beta',
        'Environment :: Web Environment',
        'Intended Audience :: Developers',
        'License :: OSI Approved :: BSD License',
        'Operating System :: OS Independent',
        'Topic :: Utilities'
    ],
)
