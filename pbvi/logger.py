from datetime import datetime


def log(content:str) -> None:
    '''
    Function to print a log line with a timestamp 
    '''
    print(f'[{datetime.now().strftime("%m/%d/%Y, %H:%M:%S")}] ' + content)


def warn(content:str) -> None:
    '''
    Function to print a warning line, these are not timestamped.
    '''
    print(f'[Warning] {content}')
